import json
import os
import re
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict

from media_models import ProjectDedupState


_PROJECT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class MediaStore:
    """
    FS-based object store stand-in.
    Scene context (input):   <base>/<project_id>/scene-context.json
    Media context (output):  <base>/<project_id>/media-context.json
    Dedup state:             <base>/<project_id>/dedup-state.json
    Asset bytes:             <base>/<storage key>   (project/<id>/scene-<n>/<kind>/<i>.<ext>)
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir
        os.makedirs(self.base_dir, exist_ok=True)

    def _check_project_id(self, project_id: str) -> str:
        project_id = str(project_id or "").strip()
        if not _PROJECT_ID_RE.match(project_id) or ".." in project_id:
            raise ValueError(f"invalid project id: {project_id!r}")
        return project_id

    def project_dir(self, project_id: str) -> str:
        return os.path.join(self.base_dir, self._check_project_id(project_id))

    def scene_context_path(self, project_id: str) -> str:
        return os.path.join(self.project_dir(project_id), "scene-context.json")

    def media_context_path(self, project_id: str) -> str:
        return os.path.join(self.project_dir(project_id), "media-context.json")

    def dedup_state_path(self, project_id: str) -> str:
        return os.path.join(self.project_dir(project_id), "dedup-state.json")

    def exists(self, project_id: str) -> bool:
        return os.path.exists(self.scene_context_path(project_id))

    def _read_json(self, path: str) -> dict:
        if not os.path.exists(path):
            raise FileNotFoundError(path)
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_atomic(self, path: str, payload: bytes, prefix: str) -> None:
        """
        Atomic write: write to temp file in same dir, then replace.
        """
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=prefix, dir=directory)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_path, path)
        finally:
            try:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
            except OSError:
                pass

    def _write_json(self, path: str, data: Dict[str, Any], prefix: str) -> None:
        if "updated_at" not in data:
            data["updated_at"] = _now_iso()
        payload = (json.dumps(data, ensure_ascii=False, indent=2) + "\n").encode("utf-8")
        self._write_atomic(path, payload, prefix)

    def read_scene_context(self, project_id: str) -> dict:
        return self._read_json(self.scene_context_path(project_id))

    def write_scene_context(self, project_id: str, context: dict) -> None:
        self._write_json(self.scene_context_path(project_id), dict(context), "scene_context_")

    def read_media_context(self, project_id: str) -> dict:
        return self._read_json(self.media_context_path(project_id))

    def write_media_context(self, project_id: str, context: dict) -> None:
        self._write_json(self.media_context_path(project_id), dict(context), "media_context_")

    def read_dedup_state(self, project_id: str) -> ProjectDedupState:
        """Dedup state carried over from earlier runs of the same project (empty if none)."""
        path = self.dedup_state_path(project_id)
        if not os.path.exists(path):
            return ProjectDedupState()
        return ProjectDedupState.from_dict(self._read_json(path))

    def write_dedup_state(self, project_id: str, state: ProjectDedupState) -> None:
        self._write_json(self.dedup_state_path(project_id), state.to_dict(), "dedup_state_")

    def asset_path(self, storage_key: str) -> str:
        parts = [p for p in str(storage_key or "").split("/") if p]
        if len(parts) < 3 or parts[0] != "project" or any(p in (".", "..") for p in parts):
            raise ValueError(f"invalid storage key: {storage_key!r}")
        self._check_project_id(parts[1])
        return os.path.join(self.base_dir, *parts)

    def save_asset(self, storage_key: str, data: bytes) -> str:
        path = self.asset_path(storage_key)
        self._write_atomic(path, data, "asset_")
        return path
