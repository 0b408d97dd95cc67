#!/usr/bin/env python3
"""
FallbackGenerator tests: strategy order, never raising, dedup of synthetic assets.

Run:
  python3 -m pytest backend/test_fallback_generator.py
"""

import io

import numpy as np
import requests
from PIL import Image

from fallback_generator import MINIMAL_PNG, FallbackGenerator, render_text_placeholder
from media_models import MediaKind, ProjectDedupState, Provider, SceneContext


class _Resp:
    def __init__(self, status_code=200, content=b""):
        self.status_code = status_code
        self.content = content


class _Session:
    """Answers by URL substring; anything unmatched raises ConnectionError."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.urls = []

    def get(self, url, headers=None, timeout=None):
        self.urls.append(url)
        for needle, resp in self.routes.items():
            if needle in url:
                return resp
        raise requests.ConnectionError("offline")


def _photo(seed=0) -> bytes:
    rng = np.random.default_rng(seed)
    buf = io.BytesIO()
    Image.fromarray(rng.integers(0, 256, size=(108, 192, 3)).astype(np.uint8), "RGB").save(buf, format="JPEG")
    return buf.getvalue()


CTX = SceneContext(purpose="travel", emotional_tone="excited", title="Paris Highlights", duration_sec=12.0)


def test_themed_photo_used_when_available():
    session = _Session({"loremflickr.com": _Resp(200, _photo())})
    gen = FallbackGenerator(session=session)

    asset = gen.generate("Eiffel Tower", CTX, attempt_index=0)

    assert asset.fallback_strategy == "themed_photo"
    assert asset.provider == Provider.FALLBACK and asset.synthetic is True
    assert asset.kind == MediaKind.IMAGE and asset.content_type == "image/jpeg"
    assert "/1920/1080/eiffel-tower,travel?lock=" in session.urls[0]


def test_non_image_response_falls_through_to_random_photo():
    session = _Session({
        "loremflickr.com": _Resp(200, b"<html>rate limited</html>" * 100),
        "picsum.photos": _Resp(200, _photo(1)),
    })
    asset = FallbackGenerator(session=session).generate("Eiffel Tower", CTX, attempt_index=2)
    assert asset.fallback_strategy == "random_photo"
    assert session.urls[1] == "https://picsum.photos/seed/eiffel-tower-paris-highlights-2/1920/1080"


def test_offline_renders_text_placeholder():
    dedup = ProjectDedupState()
    gen = FallbackGenerator(session=_Session(), dedup_state=dedup)

    asset = gen.generate("Eiffel Tower", CTX, attempt_index=0)

    assert asset.fallback_strategy == "text_placeholder"
    img = Image.open(io.BytesIO(asset.data))
    assert img.size == (1920, 1080)
    assert dedup.is_hash_used(asset.content_hash)
    assert len(gen.last_errors) == 2


def test_placeholders_differ_per_attempt():
    dedup = ProjectDedupState()
    gen = FallbackGenerator(session=_Session(), dedup_state=dedup)
    hashes = {gen.generate("Eiffel Tower", CTX, attempt_index=i).content_hash for i in range(3)}
    assert len(hashes) == 3


def test_renderer_failure_yields_minimal_placeholder():
    def broken(*args, **kwargs):
        raise OSError("no font")

    gen = FallbackGenerator(session=_Session(), renderer=broken)
    asset = gen.generate("", None)

    assert asset.fallback_strategy == "minimal_placeholder"
    assert asset.data == MINIMAL_PNG
    assert asset.content_type == "image/png"
    assert any("no font" in e for e in gen.last_errors)


def test_render_text_placeholder_is_jpeg():
    data = render_text_placeholder("Colosseum", CTX, attempt_index=1, width=640, height=360)
    assert data[:3] == b"\xff\xd8\xff"
    assert Image.open(io.BytesIO(data)).size == (640, 360)
