#!/usr/bin/env python3
"""
Provider adapter tests (fake HTTP session, no network).

Covers: response mapping -> MediaCandidate, best-variant choice, error typing
(429 / auth / transport / empty), Google Places resolve + dedupe + photo fetch.

Run:
  python3 -m pytest backend/test_media_sources.py
"""

import pytest
import requests

from media_models import MediaKind, Provider, ProviderError, RateBudget, RateLimitExceeded, ValidationFailure
from media_sources import (
    GooglePlacesSource,
    PexelsSource,
    PixabaySource,
    create_media_sources,
    pick_best_variant,
)
from rate_limit_governor import RateLimitGovernor


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, headers=None, content=b"", text=""):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.content = content
        self.text = text
        self.closed = False

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def iter_content(self, chunk_size=1024):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]

    def close(self):
        self.closed = True


class _FakeSession:
    """Routes by URL substring; a list value is consumed one response per call."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None, stream=False):
        self.calls.append({"url": url, "params": dict(params or {}), "headers": dict(headers or {}), "timeout": timeout})
        for needle, resp in self.routes.items():
            if needle in url:
                if isinstance(resp, list):
                    resp = resp.pop(0)
                if isinstance(resp, Exception):
                    raise resp
                return resp
        return _FakeResponse(404, {}, text="not found")


def _open_governor():
    return RateLimitGovernor(budgets={}, sleep=lambda s: None)


def _pexels_photo(pid, w, h, slug="eiffel-tower-at-night"):
    return {
        "id": pid,
        "width": w,
        "height": h,
        "url": f"https://www.pexels.com/photo/{slug}-{pid}/",
        "photographer": "Jane Doe",
        "alt": "Eiffel Tower lit up at night",
        "src": {"original": f"https://images.pexels.com/photos/{pid}/pexels-photo-{pid}.jpeg"},
    }


def test_pick_best_variant_prefers_largest_within_cap():
    variants = [(3840, 2160, "4k"), (1920, 1080, "fhd"), (1280, 720, "hd"), (960, 540, "sd")]
    assert pick_best_variant(variants, max_height=1080) == (1920, 1080, "fhd")
    assert pick_best_variant(variants, max_height=None) == (3840, 2160, "4k")


def test_pick_best_variant_falls_back_to_smallest_above_cap_or_none():
    assert pick_best_variant([(3840, 2160, "4k"), (2560, 1440, "qhd")], max_height=1080) == (2560, 1440, "qhd")
    assert pick_best_variant([(960, 540, "sd"), (640, 360, "tiny")]) is None


def test_pexels_photo_mapping():
    session = _FakeSession({
        "api.pexels.com/v1/search": _FakeResponse(200, {"photos": [_pexels_photo(1, 4000, 2667), _pexels_photo(2, 800, 600)]}),
    })
    src = PexelsSource("px-key", _open_governor(), session=session)

    out = src.search("Eiffel Tower", kind=MediaKind.IMAGE, limit=5)

    assert len(out) == 1
    c = out[0]
    assert c.id == "pexels-img-1"
    assert c.provider == Provider.PEXELS and c.kind == MediaKind.IMAGE
    assert (c.width, c.height) == (1920, 1280)
    assert c.download_url.endswith("?auto=compress&cs=tinysrgb&w=1920")
    assert c.page_url == "https://www.pexels.com/photo/eiffel-tower-at-night-1/"
    assert "eiffel" in c.tags and "tower" in c.tags
    assert c.attribution == "Photo by Jane Doe on Pexels"
    assert session.calls[0]["headers"]["Authorization"] == "px-key"
    assert session.calls[0]["params"]["query"] == "Eiffel Tower"


def test_pexels_video_mapping_picks_full_hd_mp4():
    video = {
        "id": 77,
        "width": 3840,
        "height": 2160,
        "duration": 14,
        "url": "https://www.pexels.com/video/paris-skyline-77/",
        "user": {"name": "Cam Era"},
        "video_files": [
            {"link": "https://v/4k.mp4", "width": 3840, "height": 2160, "file_type": "video/mp4"},
            {"link": "https://v/fhd.mp4", "width": 1920, "height": 1080, "file_type": "video/mp4"},
            {"link": "https://v/hd.mp4", "width": 1280, "height": 720, "file_type": "video/mp4"},
            {"link": "https://v/sd.webm", "width": 1920, "height": 1080, "file_type": "video/webm"},
        ],
    }
    session = _FakeSession({"api.pexels.com/videos/search": _FakeResponse(200, {"videos": [video]})})
    out = PexelsSource("k", _open_governor(), session=session).search("paris", kind=MediaKind.VIDEO)

    assert [c.download_url for c in out] == ["https://v/fhd.mp4"]
    assert out[0].duration_sec == 14.0
    assert out[0].kind == MediaKind.VIDEO


def test_search_without_kind_queries_images_and_videos():
    session = _FakeSession({
        "api.pexels.com/v1/search": _FakeResponse(200, {"photos": [_pexels_photo(1, 1920, 1080)]}),
        "api.pexels.com/videos/search": _FakeResponse(200, {"videos": []}),
    })
    out = PexelsSource("k", _open_governor(), session=session).search("paris")
    assert len(out) == 1
    assert len(session.calls) == 2


def test_search_without_kind_keeps_photos_when_video_search_fails():
    session = _FakeSession({
        "api.pexels.com/v1/search": _FakeResponse(200, {"photos": [_pexels_photo(1, 1920, 1080)]}),
        "api.pexels.com/videos/search": _FakeResponse(503, {}, text="upstream down"),
    })
    src = PexelsSource("k", _open_governor(), session=session)

    out = src.search("paris")

    assert [c.id for c in out] == ["pexels-img-1"]
    assert src.last_http_status == 503


def test_search_without_kind_raises_when_photo_search_fails():
    session = _FakeSession({"api.pexels.com/v1/search": _FakeResponse(503, {}, text="upstream down")})
    src = PexelsSource("k", _open_governor(), session=session)
    with pytest.raises(ProviderError):
        src.search("paris")
    assert len(session.calls) == 1


def test_malformed_pexels_payload_is_a_provider_error():
    photo = dict(_pexels_photo(1, 1920, 1080), width="wide")
    session = _FakeSession({"api.pexels.com/v1/search": _FakeResponse(200, {"photos": [photo]})})
    src = PexelsSource("k", _open_governor(), session=session)

    with pytest.raises(ProviderError) as exc:
        src.search("paris", kind=MediaKind.IMAGE)
    assert "malformed response" in str(exc.value)
    assert src.last_error is not None


def test_malformed_pixabay_payload_is_a_provider_error():
    hit = {"id": 9, "imageWidth": "n/a", "imageHeight": 1080, "largeImageURL": "https://pixabay.com/get/l.jpg"}
    session = _FakeSession({"pixabay.com/api/": _FakeResponse(200, {"hits": [hit]})})
    with pytest.raises(ProviderError):
        PixabaySource("k", _open_governor(), session=session).search("paris", kind=MediaKind.IMAGE)


def test_empty_results_are_not_an_error():
    session = _FakeSession({"pixabay.com/api/": _FakeResponse(200, {"total": 0, "hits": []})})
    src = PixabaySource("k", _open_governor(), session=session)
    assert src.search("nothing here", kind=MediaKind.IMAGE) == []
    assert src.last_error is None
    assert src.last_http_status == 200


def test_http_429_raises_rate_limit_and_feeds_governor():
    gov = RateLimitGovernor(budgets={Provider.PEXELS: RateBudget(limit=50, window_sec=3600.0)}, sleep=lambda s: None)
    session = _FakeSession({"api.pexels.com": _FakeResponse(429, {}, headers={"Retry-After": "30"})})
    src = PexelsSource("k", gov, session=session)

    with pytest.raises(RateLimitExceeded) as exc:
        src.search("paris", kind=MediaKind.IMAGE)
    assert exc.value.retry_after == 30.0
    assert gov.remaining(Provider.PEXELS) == 0
    assert src.last_http_status == 429


def test_auth_failure_raises_provider_error():
    session = _FakeSession({"pixabay.com/api/": _FakeResponse(400, {}, text="[ERROR 400] Invalid or missing API key")})
    src = PixabaySource("bad", _open_governor(), session=session)
    with pytest.raises(ProviderError) as exc:
        src.search("paris", kind=MediaKind.IMAGE)
    assert exc.value.http_status == 400
    assert exc.value.provider == Provider.PIXABAY
    assert "Invalid or missing API key" in src.last_error


def test_transport_failure_raises_provider_error():
    session = _FakeSession({"api.pexels.com": requests.ConnectionError("connection refused")})
    with pytest.raises(ProviderError):
        PexelsSource("k", _open_governor(), session=session).search("paris", kind=MediaKind.IMAGE)


def test_governor_is_consulted_before_every_call():
    gov = RateLimitGovernor(budgets={Provider.PEXELS: RateBudget(limit=1, window_sec=3600.0)}, sleep=lambda s: None)
    session = _FakeSession({"api.pexels.com/v1/search": _FakeResponse(200, {"photos": []})})
    src = PexelsSource("k", gov, session=session)

    src.search("one", kind=MediaKind.IMAGE)
    with pytest.raises(RateLimitExceeded):
        src.search("two", kind=MediaKind.IMAGE)
    assert len(session.calls) == 1


def test_pixabay_photo_and_video_mapping():
    photo_hit = {
        "id": 5,
        "pageURL": "https://pixabay.com/photos/paris-5/",
        "tags": "paris, eiffel tower, city",
        "imageWidth": 6000,
        "imageHeight": 4000,
        "largeImageURL": "https://cdn.pixabay.com/large_5.jpg",
        "webformatURL": "https://cdn.pixabay.com/web_5.jpg",
        "user": "photog",
    }
    video_hit = {
        "id": 9,
        "pageURL": "https://pixabay.com/videos/paris-9/",
        "tags": "paris, river",
        "duration": 21,
        "videos": {
            "large": {"url": "https://cdn.pixabay.com/v9_large.mp4", "width": 1920, "height": 1080},
            "medium": {"url": "https://cdn.pixabay.com/v9_medium.mp4", "width": 1280, "height": 720},
            "small": {"url": "https://cdn.pixabay.com/v9_small.mp4", "width": 960, "height": 540},
        },
    }
    session = _FakeSession({
        "pixabay.com/api/videos/": _FakeResponse(200, {"hits": [video_hit]}),
        "pixabay.com/api/": _FakeResponse(200, {"hits": [photo_hit]}),
    })
    src = PixabaySource("k", _open_governor(), session=session)

    photos = src.search("paris", kind=MediaKind.IMAGE)
    videos = src.search("paris", kind=MediaKind.VIDEO)

    assert len(photos) == 1
    assert photos[0].download_url == "https://cdn.pixabay.com/large_5.jpg"
    assert (photos[0].width, photos[0].height) == (1280, 853)
    assert photos[0].tags == ("paris", "eiffel tower", "city")
    assert videos[0].download_url == "https://cdn.pixabay.com/v9_large.mp4"
    assert videos[0].duration_sec == 21.0
    assert session.calls[0]["params"]["per_page"] >= 3


def _place(pid, name, rating=4.7, types=("tourist_attraction", "point_of_interest")):
    return {"place_id": pid, "name": name, "rating": rating, "types": list(types)}


def _details(pid, name, photos=2):
    return _FakeResponse(200, {
        "status": "OK",
        "result": {
            "place_id": pid,
            "name": name,
            "rating": 4.7,
            "types": ["tourist_attraction"],
            "photos": [
                {"photo_reference": f"{pid}-ref{i}", "width": 4032, "height": 3024, "html_attributions": ['<a href="x">Ann</a>']}
                for i in range(photos)
            ],
        },
    })


def test_places_resolve_dedupes_places_before_photo_calls():
    session = _FakeSession({
        "place/textsearch/json": [
            _FakeResponse(200, {"status": "OK", "results": [_place("p1", "Eiffel Tower"), _place("p2", "Champ de Mars")]}),
            _FakeResponse(200, {"status": "OK", "results": [_place("p2", "Champ de Mars"), _place("p3", "Trocadero")]}),
        ],
        "place/details/json": [_details("p1", "Eiffel Tower"), _details("p2", "Champ de Mars"), _details("p3", "Trocadero")],
    })
    src = GooglePlacesSource("g-key", _open_governor(), session=session)

    out = src.search("Eiffel Tower", kind=MediaKind.IMAGE, limit=20)

    detail_calls = [c for c in session.calls if "details" in c["url"]]
    assert [c["params"]["place_id"] for c in detail_calls] == ["p1", "p2", "p3"]
    assert len(out) == 6
    assert len({c.page_url for c in out}) == 6
    first = out[0]
    assert first.provider == Provider.GOOGLE_PLACES
    assert (first.width, first.height) == (1920, 1440)
    assert "g-key" not in first.download_url
    assert first.bonus_fields["rating"] == 4.7
    assert "tourist_attraction" in first.bonus_fields["place_types"]
    assert first.attribution == "Photo by Ann via Google"
    assert session.calls[0]["params"]["query"] == "Eiffel Tower tourist attraction"


def test_places_appends_qualifier_when_nothing_found():
    session = _FakeSession({
        "place/textsearch/json": [
            _FakeResponse(200, {"status": "ZERO_RESULTS", "results": []}),
            _FakeResponse(200, {"status": "ZERO_RESULTS", "results": []}),
            _FakeResponse(200, {"status": "OK", "results": [_place("p9", "Old Town")]}),
        ],
    })
    src = GooglePlacesSource("k", _open_governor(), session=session)
    places = src.resolve_places("Tallinn")
    assert [p["place_id"] for p in places] == ["p9"]
    assert session.calls[-1]["params"]["query"] == "Tallinn landmarks"


def test_places_status_mapping():
    limited = _FakeSession({"place/textsearch/json": _FakeResponse(200, {"status": "OVER_QUERY_LIMIT"})})
    with pytest.raises(RateLimitExceeded):
        GooglePlacesSource("k", _open_governor(), session=limited).resolve_places("Rome")

    denied = _FakeSession({"place/textsearch/json": _FakeResponse(200, {"status": "REQUEST_DENIED", "error_message": "bad key"})})
    with pytest.raises(ProviderError) as exc:
        GooglePlacesSource("k", _open_governor(), session=denied).resolve_places("Rome")
    assert "REQUEST_DENIED" in str(exc.value)


def test_places_never_returns_video():
    session = _FakeSession({})
    assert GooglePlacesSource("k", _open_governor(), session=session).search("Rome", kind=MediaKind.VIDEO) == []
    assert session.calls == []


def test_places_download_adds_key_and_is_governed():
    gov = RateLimitGovernor(budgets={Provider.GOOGLE_PLACES: RateBudget(limit=5, window_sec=60.0)}, sleep=lambda s: None)
    session = _FakeSession({
        "place/details/json": _details("p1", "Eiffel Tower", photos=1),
        "place/photo": _FakeResponse(200, content=b"\xff\xd8\xff" + b"x" * 100),
    })
    src = GooglePlacesSource("g-key", gov, session=session)
    cand = src.fetch_place_photos("p1")[0]

    data = src.download(cand)

    assert data.startswith(b"\xff\xd8\xff")
    assert session.calls[-1]["params"] == {"key": "g-key"}
    assert gov.remaining(Provider.GOOGLE_PLACES) == 3


def test_download_enforces_max_bytes():
    session = _FakeSession({
        "api.pexels.com/v1/search": _FakeResponse(200, {"photos": [_pexels_photo(1, 1920, 1080)]}),
        "images.pexels.com": _FakeResponse(200, content=b"\xff\xd8\xff" + b"x" * 5000),
    })
    src = PexelsSource("k", _open_governor(), session=session)
    cand = src.search("paris", kind=MediaKind.IMAGE)[0]

    with pytest.raises(ValidationFailure) as exc:
        src.download(cand, max_bytes=1000)
    assert exc.value.reason == "too_large"

    session.routes["images.pexels.com"] = _FakeResponse(500, text="oops")
    with pytest.raises(ProviderError):
        src.download(cand)


def test_create_media_sources_skips_missing_keys():
    sources = create_media_sources({Provider.PIXABAY: "k1", Provider.PEXELS: "", Provider.GOOGLE_PLACES: "k3"}, _open_governor(), session=_FakeSession({}))
    assert list(sources) == [Provider.PIXABAY, Provider.GOOGLE_PLACES]
    assert isinstance(sources[Provider.GOOGLE_PLACES], GooglePlacesSource)
    assert sources[Provider.GOOGLE_PLACES].timeout_sec == 15.0
    assert sources[Provider.PIXABAY].timeout_sec == 10.0


def test_places_malformed_details_is_a_provider_error():
    broken = _FakeResponse(200, {"status": "OK", "result": {"name": "Louvre", "photos": [{"photo_reference": "r", "width": "big"}]}})
    session = _FakeSession({"place/details/json": broken})
    with pytest.raises(ProviderError) as exc:
        GooglePlacesSource("k", _open_governor(), session=session).fetch_place_photos("p1")
    assert "malformed response" in str(exc.value)
