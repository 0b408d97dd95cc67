#!/usr/bin/env python3
"""
MediaStore tests: project id validation, atomic JSON writes, dedup persistence, asset keys.

Run:
  python3 -m pytest backend/test_media_store.py
"""

import os

import pytest

from media_models import ProjectDedupState
from media_store import MediaStore


def test_scene_context_roundtrip_and_exists(tmp_path):
    store = MediaStore(str(tmp_path))
    assert store.exists("proj_1") is False

    store.write_scene_context("proj_1", {"scenes": [{"sceneNumber": 1}]})

    assert store.exists("proj_1") is True
    data = store.read_scene_context("proj_1")
    assert data["scenes"] == [{"sceneNumber": 1}]
    assert "updated_at" in data
    assert [n for n in os.listdir(store.project_dir("proj_1")) if n.startswith("scene_context_")] == []


def test_missing_context_raises_file_not_found(tmp_path):
    with pytest.raises(FileNotFoundError):
        MediaStore(str(tmp_path)).read_media_context("proj_x")


@pytest.mark.parametrize("bad", ["", "../etc", "a/b", ".hidden", "x..y"])
def test_invalid_project_ids_rejected(tmp_path, bad):
    with pytest.raises(ValueError):
        MediaStore(str(tmp_path)).scene_context_path(bad)


def test_dedup_state_persists(tmp_path):
    store = MediaStore(str(tmp_path))
    assert store.read_dedup_state("proj_1").used_urls == set()

    state = ProjectDedupState()
    assert state.commit("abc", ["https://a", "https://b"])
    store.write_dedup_state("proj_1", state)

    loaded = store.read_dedup_state("proj_1")
    assert loaded.used_content_hashes == {"abc"}
    assert loaded.is_url_used("https://b")
    assert loaded.commit("abc", []) is False


def test_save_asset_under_storage_key(tmp_path):
    store = MediaStore(str(tmp_path))
    path = store.save_asset("project/proj_1/scene-2/image/1.jpg", b"\xff\xd8\xffdata")
    assert path == str(tmp_path / "project" / "proj_1" / "scene-2" / "image" / "1.jpg")
    with open(path, "rb") as f:
        assert f.read() == b"\xff\xd8\xffdata"

    for bad in ("project/../x/1.jpg", "assets/proj_1/1.jpg", "project/proj_1"):
        with pytest.raises(ValueError):
            store.asset_path(bad)
