#!/usr/bin/env python3
"""
Media curation runner for one stored project (no HTTP server).

Usage (from repo root):
  python backend/run_media_curation.py --project proj_123 --verbose
"""

import argparse
import json

from curator_settings import CuratorSettings
from media_curator import curate_stored_project
from media_store import MediaStore


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser()
    p.add_argument("--project", required=True, help="Project ID, e.g. proj_9f2ea4ca")
    p.add_argument("--store-dir", default=None, help="Override MEDIA_STORE_DIR")
    p.add_argument("--verbose", action="store_true", help="Enable per-scene / per-provider logs")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    settings = CuratorSettings.from_env()
    if args.store_dir:
        settings.store_dir = args.store_dir
    store = MediaStore(settings.store_dir)

    project_id = args.project
    try:
        if not store.exists(project_id):
            print(f"❌ Project not found: {project_id} (expected {store.scene_context_path(project_id)})")
            return 2
    except ValueError as e:
        print(f"❌ {e}")
        return 2

    if not settings.api_keys:
        print("⚠️  No media provider API keys configured; every scene will use fallback assets")

    try:
        report = curate_stored_project(store, project_id, settings, verbose=bool(args.verbose))
    except ValueError as e:
        print(f"❌ {e}")
        return 3

    summary = {k: report[k] for k in ("totalAssets", "realDownloads", "realDownloadRate", "failedProviders")}
    print(json.dumps(summary, indent=2))
    print(f"✅ Media curation done: {report['mediaContextPath']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
