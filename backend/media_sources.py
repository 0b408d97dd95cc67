"""
Media Sources - provider adapters for multi-provider image/video search.

Supported providers:
- Pexels (stock photos + videos)           -> Provider.PEXELS
- Pixabay (stock photos + videos)          -> Provider.PIXABAY
- Google Places (photos of real places)    -> Provider.GOOGLE_PLACES

Every adapter:
- calls RateLimitGovernor.reserve() before each API request
- maps the provider response into MediaCandidate
- picks the single best-resolution variant at or above the minimum (1280x720)
- returns [] on "no results", raises ProviderError on transport/auth/5xx or a malformed payload,
  raises RateLimitExceeded on HTTP 429
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import requests

from media_models import (
    DEFAULT_PROVIDER_PRIORITY,
    MediaCandidate,
    MediaKind,
    Provider,
    ProviderError,
    RateLimitExceeded,
    ValidationFailure,
)
from rate_limit_governor import RateLimitGovernor


USER_AGENT = "MediaCuratorBot/1.0 (Short video production; stock media search)"

MIN_WIDTH = 1280
MIN_HEIGHT = 720
MAX_IMAGE_WIDTH = 1920
MAX_VIDEO_HEIGHT = 1080

DEFAULT_RETRY_AFTER_SEC = 60.0
DOWNLOAD_CHUNK_BYTES = 64 * 1024


Variant = Tuple[int, int, str]  # (width, height, url)


def pick_best_variant(
    variants: Iterable[Variant],
    min_width: int = MIN_WIDTH,
    min_height: int = MIN_HEIGHT,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
) -> Optional[Variant]:
    """
    Single best variant at or above the minimum resolution.
    Prefer the largest variant inside the (optional) cap; if every qualifying
    variant is above the cap, take the smallest of them.
    """
    qualifying = []
    for w, h, url in variants:
        try:
            w, h = int(w or 0), int(h or 0)
        except (TypeError, ValueError):
            continue
        if not url or w < min_width or h < min_height:
            continue
        qualifying.append((w, h, url))
    if not qualifying:
        return None

    def _within_cap(v: Variant) -> bool:
        if max_width is not None and v[0] > max_width:
            return False
        if max_height is not None and v[1] > max_height:
            return False
        return True

    capped = [v for v in qualifying if _within_cap(v)]
    if capped:
        return max(capped, key=lambda v: (v[0] * v[1], v[0]))
    return min(qualifying, key=lambda v: (v[0] * v[1], v[0]))


def _scaled(width: int, height: int, longest_side: int) -> Tuple[int, int]:
    """Dimensions after a provider rescales the longest side down to `longest_side`."""
    width, height = int(width or 0), int(height or 0)
    longest = max(width, height)
    if longest <= 0 or longest <= longest_side:
        return width, height
    ratio = float(longest_side) / float(longest)
    return int(round(width * ratio)), int(round(height * ratio))


def _slug_words(page_url: str) -> List[str]:
    """'https://www.pexels.com/photo/eiffel-tower-at-night-1234/' -> ['eiffel', 'tower', 'at', 'night']"""
    try:
        path = urlparse(page_url or "").path
    except ValueError:
        return []
    segments = [s for s in path.split("/") if s]
    if not segments:
        return []
    words = re.split(r"[-_]+", segments[-1].lower())
    return [w for w in words if w and not w.isdigit()]


def _split_tags(raw: Any) -> Tuple[str, ...]:
    if isinstance(raw, (list, tuple)):
        items = [str(t) for t in raw]
    else:
        items = str(raw or "").split(",")
    out: List[str] = []
    for t in items:
        t = t.strip().lower()
        if t and t not in out:
            out.append(t)
    return tuple(out)


def _kinds(kind: Optional[MediaKind]) -> List[MediaKind]:
    if kind is None:
        return [MediaKind.IMAGE, MediaKind.VIDEO]
    return [kind]


class MediaSource(ABC):
    """
    Base class for provider adapters.
    Holds the HTTP session, the shared governor and per-provider telemetry.
    """

    provider: Provider = Provider.PEXELS

    def __init__(
        self,
        api_key: str,
        governor: RateLimitGovernor,
        session: Optional[requests.Session] = None,
        timeout_sec: float = 10,
        min_width: int = MIN_WIDTH,
        min_height: int = MIN_HEIGHT,
        verbose: bool = False,
    ):
        self.api_key = str(api_key or "").strip()
        self.governor = governor
        self.session = session if session is not None else requests.Session()
        try:
            self.timeout_sec = float(timeout_sec)
        except (TypeError, ValueError):
            self.timeout_sec = 10.0
        self.min_width = int(min_width)
        self.min_height = int(min_height)
        self.verbose = verbose
        self.source_name = self.__class__.__name__
        # Telemetry for circuit-breakers / diagnostics
        self.last_http_status: Optional[int] = None
        self.last_error: Optional[str] = None
        self.request_count = 0

    def _record_success(self, http_status: Optional[int] = None) -> None:
        self.last_http_status = http_status
        self.last_error = None

    def _record_error(self, http_status: Optional[int], err: Any) -> None:
        self.last_http_status = http_status
        self.last_error = str(err)

    def _map_response(self, mapper: Callable[[Any], List[MediaCandidate]], data: Any) -> List[MediaCandidate]:
        """Run a payload mapper; a payload that does not map is a provider failure."""
        try:
            return mapper(data)
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            self._record_error(self.last_http_status, e)
            raise ProviderError(self.provider, f"malformed response: {e}", http_status=self.last_http_status) from e

    def _search_kinds(
        self,
        kind: Optional[MediaKind],
        fetch: Callable[[MediaKind], List[MediaCandidate]],
    ) -> List[MediaCandidate]:
        """
        fetch(kind) for each requested kind. With kind=None a failure after the first
        kind returns the candidates already mapped; a failure on the first kind raises.
        """
        out: List[MediaCandidate] = []
        for i, k in enumerate(_kinds(kind)):
            try:
                out.extend(fetch(k))
            except (RateLimitExceeded, ProviderError) as e:
                if i == 0:
                    raise
                if self.verbose:
                    print(f"⚠️  {self.source_name}: {k.value} search failed, keeping {len(out)} candidates: {e}")
                break
        return out

    def _headers(self) -> Dict[str, str]:
        return {"User-Agent": USER_AGENT}

    def _get_json(self, url: str, params: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        One rate-governed API request.
        429 -> RateLimitExceeded; transport errors / 4xx / 5xx / non-JSON -> ProviderError.
        """
        self.governor.reserve(self.provider)
        self.request_count += 1
        try:
            resp = self.session.get(url, params=params, headers=headers or self._headers(), timeout=self.timeout_sec)
        except requests.RequestException as e:
            self._record_error(None, e)
            raise ProviderError(self.provider, e) from e

        status = getattr(resp, "status_code", None)
        resp_headers = getattr(resp, "headers", None) or {}
        self.governor.sync_from_headers(self.provider, resp_headers)

        if status == 429:
            retry_after = DEFAULT_RETRY_AFTER_SEC
            for k, v in resp_headers.items():
                if str(k).lower() == "retry-after":
                    try:
                        retry_after = float(v)
                    except (TypeError, ValueError):
                        pass
            self._record_error(status, "HTTP 429 Too Many Requests")
            self.governor.penalize(self.provider, retry_after)
            raise RateLimitExceeded(self.provider, retry_after)

        if status is None or status >= 400:
            body = ""
            try:
                body = str(resp.text or "")[:200]
            except Exception:
                body = ""
            self._record_error(status, f"HTTP {status} {body}".strip())
            raise ProviderError(self.provider, f"HTTP {status} {body}".strip(), http_status=status)

        try:
            data = resp.json() or {}
        except ValueError as e:
            self._record_error(status, e)
            raise ProviderError(self.provider, f"invalid JSON: {e}", http_status=status) from e

        self._record_success(status)
        return data if isinstance(data, dict) else {}

    @abstractmethod
    def search(self, query: str, kind: Optional[MediaKind] = None, limit: int = 10) -> List[MediaCandidate]:
        """
        Search the provider. `kind=None` searches images and videos.
        Returns [] when the provider has nothing for the query.
        """

    def download(self, candidate: MediaCandidate, max_bytes: Optional[int] = None, timeout_sec: float = 30) -> bytes:
        """
        Fetch the candidate's bytes. CDN downloads are not counted against the API budget.
        Raises ProviderError on transport/HTTP failure, ValidationFailure("too_large") over max_bytes.
        """
        return self._download_url(candidate, candidate.download_url, None, max_bytes, timeout_sec)

    def _download_url(
        self,
        candidate: MediaCandidate,
        url: str,
        params: Optional[Dict[str, Any]],
        max_bytes: Optional[int],
        timeout_sec: float,
    ) -> bytes:
        try:
            resp = self.session.get(url, params=params, headers=self._headers(), timeout=timeout_sec, stream=True)
        except requests.RequestException as e:
            raise ProviderError(self.provider, e) from e

        try:
            status = getattr(resp, "status_code", None)
            if status == 429:
                raise RateLimitExceeded(self.provider, DEFAULT_RETRY_AFTER_SEC)
            if status is None or status >= 400:
                raise ProviderError(self.provider, f"download HTTP {status}", http_status=status)

            chunks: List[bytes] = []
            total = 0
            try:
                for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                    if not chunk:
                        continue
                    total += len(chunk)
                    if max_bytes is not None and total > max_bytes:
                        raise ValidationFailure("too_large", candidate)
                    chunks.append(chunk)
            except requests.RequestException as e:
                raise ProviderError(self.provider, e) from e
            return b"".join(chunks)
        finally:
            close = getattr(resp, "close", None)
            if callable(close):
                close()


class PexelsSource(MediaSource):
    """
    Pexels stock photo + video search.
    Requires env: PEXELS_API_KEY
    """

    provider = Provider.PEXELS

    def __init__(self, api_key: str, governor: RateLimitGovernor, max_video_height: int = MAX_VIDEO_HEIGHT, **kwargs):
        super().__init__(api_key, governor, **kwargs)
        self.max_video_height = int(max_video_height or MAX_VIDEO_HEIGHT)
        self.photo_search_url = "https://api.pexels.com/v1/search"
        self.video_search_url = "https://api.pexels.com/videos/search"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": self.api_key, "User-Agent": USER_AGENT}

    def search(self, query: str, kind: Optional[MediaKind] = None, limit: int = 10) -> List[MediaCandidate]:
        q = str(query or "").strip()
        if not self.api_key or not q:
            return []

        def fetch(k: MediaKind) -> List[MediaCandidate]:
            params = {"query": q, "per_page": max(1, min(int(limit), 80)), "page": 1, "orientation": "landscape"}
            if k == MediaKind.IMAGE:
                data = self._get_json(self.photo_search_url, params)
                return self._map_response(lambda d: self._map_photos(d.get("photos") or []), data)
            data = self._get_json(self.video_search_url, params)
            return self._map_response(lambda d: self._map_videos(d.get("videos") or []), data)

        out = self._search_kinds(kind, fetch)
        if self.verbose:
            print(f"🔍 Pexels: '{q[:60]}' -> {len(out)} candidates")
        return out

    def _map_photos(self, photos: Sequence[Dict[str, Any]]) -> List[MediaCandidate]:
        out: List[MediaCandidate] = []
        for p in photos:
            pid = p.get("id")
            src = p.get("src") or {}
            original = str(src.get("original") or "").strip()
            if pid is None or not original:
                continue
            w, h = int(p.get("width") or 0), int(p.get("height") or 0)
            variants: List[Variant] = [(w, h, original)]
            if w > MAX_IMAGE_WIDTH:
                sw, sh = _scaled(w, h, MAX_IMAGE_WIDTH) if w >= h else (MAX_IMAGE_WIDTH, int(round(h * MAX_IMAGE_WIDTH / float(w))))
                variants.append((sw, sh, f"{original}?auto=compress&cs=tinysrgb&w={MAX_IMAGE_WIDTH}"))
            pick = pick_best_variant(variants, self.min_width, self.min_height, max_width=MAX_IMAGE_WIDTH)
            if not pick:
                continue
            page_url = str(p.get("url") or "")
            alt = str(p.get("alt") or "")
            photographer = str(p.get("photographer") or "").strip()
            out.append(
                MediaCandidate(
                    id=f"pexels-img-{pid}",
                    provider=self.provider,
                    kind=MediaKind.IMAGE,
                    download_url=pick[2],
                    page_url=page_url,
                    width=pick[0],
                    height=pick[1],
                    attribution=f"Photo by {photographer} on Pexels" if photographer else "Pexels",
                    tags=_split_tags(_slug_words(page_url)),
                    description=alt,
                    bonus_fields={"avg_color": p.get("avg_color")},
                )
            )
        return out

    def _map_videos(self, videos: Sequence[Dict[str, Any]]) -> List[MediaCandidate]:
        out: List[MediaCandidate] = []
        for v in videos:
            vid = v.get("id")
            if vid is None:
                continue
            variants: List[Variant] = []
            for f in v.get("video_files") or []:
                if str(f.get("file_type") or "").lower() not in ("video/mp4", "mp4"):
                    continue
                variants.append((f.get("width") or 0, f.get("height") or 0, str(f.get("link") or "").strip()))
            pick = pick_best_variant(variants, self.min_width, self.min_height, max_height=self.max_video_height)
            if not pick:
                continue
            page_url = str(v.get("url") or "")
            user = (v.get("user") or {}).get("name")
            duration = v.get("duration")
            tags = _split_tags(list(v.get("tags") or []) + _slug_words(page_url))
            out.append(
                MediaCandidate(
                    id=f"pexels-vid-{vid}",
                    provider=self.provider,
                    kind=MediaKind.VIDEO,
                    download_url=pick[2],
                    page_url=page_url,
                    width=pick[0],
                    height=pick[1],
                    duration_sec=float(duration) if isinstance(duration, (int, float)) else None,
                    attribution=f"Video by {user} on Pexels" if user else "Pexels",
                    tags=tags,
                    description=" ".join(tags),
                    bonus_fields={"thumbnail_url": v.get("image")},
                )
            )
        return out


class PixabaySource(MediaSource):
    """
    Pixabay stock photo + video search.
    Requires env: PIXABAY_API_KEY
    """

    provider = Provider.PIXABAY

    def __init__(self, api_key: str, governor: RateLimitGovernor, max_video_height: int = MAX_VIDEO_HEIGHT, **kwargs):
        super().__init__(api_key, governor, **kwargs)
        self.max_video_height = int(max_video_height or MAX_VIDEO_HEIGHT)
        self.photo_search_url = "https://pixabay.com/api/"
        self.video_search_url = "https://pixabay.com/api/videos/"

    def search(self, query: str, kind: Optional[MediaKind] = None, limit: int = 10) -> List[MediaCandidate]:
        q = str(query or "").strip()
        if not self.api_key or not q:
            return []

        def fetch(k: MediaKind) -> List[MediaCandidate]:
            params = {
                "key": self.api_key,
                "q": q[:100],
                # Pixabay rejects per_page < 3
                "per_page": max(3, min(int(limit), 200)),
                "safesearch": "true",
                "min_width": self.min_width,
                "min_height": self.min_height,
            }
            if k == MediaKind.IMAGE:
                params.update({"image_type": "photo", "orientation": "horizontal"})
                data = self._get_json(self.photo_search_url, params)
                return self._map_response(lambda d: self._map_photos(d.get("hits") or []), data)
            data = self._get_json(self.video_search_url, params)
            return self._map_response(lambda d: self._map_videos(d.get("hits") or []), data)

        out = self._search_kinds(kind, fetch)
        if self.verbose:
            print(f"🔍 Pixabay: '{q[:60]}' -> {len(out)} candidates")
        return out

    def _map_photos(self, hits: Sequence[Dict[str, Any]]) -> List[MediaCandidate]:
        out: List[MediaCandidate] = []
        for h in hits:
            hid = h.get("id")
            if hid is None:
                continue
            w, ht = int(h.get("imageWidth") or 0), int(h.get("imageHeight") or 0)
            variants: List[Variant] = []
            if h.get("fullHDURL"):
                variants.append((*_scaled(w, ht, 1920), str(h["fullHDURL"])))
            if h.get("largeImageURL"):
                variants.append((*_scaled(w, ht, 1280), str(h["largeImageURL"])))
            if h.get("webformatURL"):
                variants.append((*_scaled(w, ht, 640), str(h["webformatURL"])))
            pick = pick_best_variant(variants, self.min_width, self.min_height, max_width=MAX_IMAGE_WIDTH)
            if not pick:
                continue
            user = str(h.get("user") or "").strip()
            tags = _split_tags(h.get("tags"))
            out.append(
                MediaCandidate(
                    id=f"pixabay-img-{hid}",
                    provider=self.provider,
                    kind=MediaKind.IMAGE,
                    download_url=pick[2],
                    page_url=str(h.get("pageURL") or ""),
                    width=pick[0],
                    height=pick[1],
                    attribution=f"Image by {user} from Pixabay" if user else "Pixabay",
                    tags=tags,
                    description=", ".join(tags),
                    bonus_fields={"likes": h.get("likes"), "downloads": h.get("downloads"), "views": h.get("views")},
                )
            )
        return out

    def _map_videos(self, hits: Sequence[Dict[str, Any]]) -> List[MediaCandidate]:
        out: List[MediaCandidate] = []
        for h in hits:
            hid = h.get("id")
            if hid is None:
                continue
            videos = h.get("videos") or {}
            variants: List[Variant] = []
            for key in ("large", "medium", "small", "tiny"):
                v = videos.get(key)
                if isinstance(v, dict) and v.get("url"):
                    variants.append((v.get("width") or 0, v.get("height") or 0, str(v.get("url")).strip()))
            pick = pick_best_variant(variants, self.min_width, self.min_height, max_height=self.max_video_height)
            if not pick:
                continue
            user = str(h.get("user") or "").strip()
            duration = h.get("duration")
            tags = _split_tags(h.get("tags"))
            out.append(
                MediaCandidate(
                    id=f"pixabay-vid-{hid}",
                    provider=self.provider,
                    kind=MediaKind.VIDEO,
                    download_url=pick[2],
                    page_url=str(h.get("pageURL") or ""),
                    width=pick[0],
                    height=pick[1],
                    duration_sec=float(duration) if isinstance(duration, (int, float)) else None,
                    attribution=f"Video by {user} from Pixabay" if user else "Pixabay",
                    tags=tags,
                    description=", ".join(tags),
                    bonus_fields={"likes": h.get("likes"), "downloads": h.get("downloads"), "views": h.get("views")},
                )
            )
        return out


class GooglePlacesSource(MediaSource):
    """
    Google Places photos (location-aware, images only).
    Requires env: GOOGLE_PLACES_API_KEY

    Free-text query -> place entities (Text Search) -> per-place photos (Place Details).
    Places are deduplicated by place_id before any photo call.
    """

    provider = Provider.GOOGLE_PLACES

    PLACE_TYPE_QUERIES: Tuple[Tuple[str, str], ...] = (
        ("tourist attraction", "tourist_attraction"),
        ("point of interest", "point_of_interest"),
    )
    QUALIFIER_TERMS: Tuple[str, ...] = ("landmarks",)

    def __init__(self, api_key: str, governor: RateLimitGovernor, max_places: int = 5, **kwargs):
        kwargs.setdefault("timeout_sec", 15)
        super().__init__(api_key, governor, **kwargs)
        self.max_places = max(1, int(max_places))
        self.text_search_url = "https://maps.googleapis.com/maps/api/place/textsearch/json"
        self.details_url = "https://maps.googleapis.com/maps/api/place/details/json"
        self.photo_url = "https://maps.googleapis.com/maps/api/place/photo"

    def _places_call(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        data = self._get_json(url, {**params, "key": self.api_key})
        status = str(data.get("status") or "OK").upper()
        if status in ("OK", "ZERO_RESULTS"):
            return data
        if status == "OVER_QUERY_LIMIT":
            self.governor.penalize(self.provider, DEFAULT_RETRY_AFTER_SEC)
            self._record_error(self.last_http_status, status)
            raise RateLimitExceeded(self.provider, DEFAULT_RETRY_AFTER_SEC)
        msg = f"{status}: {data.get('error_message') or ''}".strip().rstrip(":")
        self._record_error(self.last_http_status, msg)
        raise ProviderError(self.provider, msg, http_status=self.last_http_status)

    def resolve_places(self, query: str) -> List[Dict[str, Any]]:
        """
        Free-text query -> unique place entities.
        Tries the place-type queries first, then qualifier terms if nothing was found.
        """
        q = str(query or "").strip()
        if not self.api_key or not q:
            return []

        places: List[Dict[str, Any]] = []
        seen_ids = set()

        def _collect(results: Sequence[Dict[str, Any]]) -> None:
            for r in results:
                if not isinstance(r, dict):
                    continue
                pid = r.get("place_id")
                if not pid or pid in seen_ids:
                    continue
                seen_ids.add(pid)
                places.append(r)

        for label, place_type in self.PLACE_TYPE_QUERIES:
            if len(places) >= self.max_places:
                break
            data = self._places_call(self.text_search_url, {"query": f"{q} {label}", "type": place_type})
            _collect(data.get("results") or [])

        if not places:
            for term in self.QUALIFIER_TERMS:
                data = self._places_call(self.text_search_url, {"query": f"{q} {term}"})
                _collect(data.get("results") or [])
                if places:
                    break

        if self.verbose:
            print(f"📍 GooglePlaces: '{q[:60]}' -> {len(places)} unique places")
        return places[: self.max_places]

    def fetch_place_photos(self, place_ref: Any) -> List[MediaCandidate]:
        """
        Photos for one place. `place_ref` is a place_id or a place dict from resolve_places().
        """
        if isinstance(place_ref, dict):
            place_id = str(place_ref.get("place_id") or "")
            summary = place_ref
        else:
            place_id = str(place_ref or "")
            summary = {}
        if not self.api_key or not place_id:
            return []

        data = self._places_call(
            self.details_url,
            {"place_id": place_id, "fields": "place_id,name,rating,user_ratings_total,types,photos,url"},
        )
        return self._map_response(lambda d: self._map_details(place_id, summary, d.get("result") or {}), data)

    def _map_details(self, place_id: str, summary: Dict[str, Any], details: Dict[str, Any]) -> List[MediaCandidate]:
        name = str(details.get("name") or summary.get("name") or "").strip()
        rating = details.get("rating", summary.get("rating"))
        types = list(details.get("types") or summary.get("types") or [])
        place_url = str(details.get("url") or f"https://www.google.com/maps/place/?q=place_id:{place_id}")

        out: List[MediaCandidate] = []
        for idx, photo in enumerate(details.get("photos") or []):
            ref = str(photo.get("photo_reference") or "").strip()
            if not ref:
                continue
            w, h = int(photo.get("width") or 0), int(photo.get("height") or 0)
            sw, sh = _scaled(w, h, MAX_IMAGE_WIDTH) if w > MAX_IMAGE_WIDTH else (w, h)
            pick = pick_best_variant([(sw, sh, f"{self.photo_url}?maxwidth={MAX_IMAGE_WIDTH}&photo_reference={ref}")], self.min_width, self.min_height)
            if not pick:
                continue
            authors = [re.sub(r"<[^>]+>", "", str(a)).strip() for a in (photo.get("html_attributions") or [])]
            authors = [a for a in authors if a]
            tags = _split_tags([*name.lower().split(), *[t.replace("_", " ") for t in types]])
            out.append(
                MediaCandidate(
                    id=f"places-{place_id}-{idx}",
                    provider=self.provider,
                    kind=MediaKind.IMAGE,
                    download_url=pick[2],
                    page_url=f"{place_url}#photo-{idx}",
                    width=pick[0],
                    height=pick[1],
                    attribution=("Photo by " + ", ".join(authors) + " via Google") if authors else "Google Places",
                    tags=tags,
                    description=name,
                    bonus_fields={
                        "place_id": place_id,
                        "place_name": name,
                        "rating": rating,
                        "user_ratings_total": details.get("user_ratings_total"),
                        "place_types": types,
                    },
                )
            )
        return out

    def search(self, query: str, kind: Optional[MediaKind] = None, limit: int = 10) -> List[MediaCandidate]:
        if kind == MediaKind.VIDEO:
            return []
        out: List[MediaCandidate] = []
        for place in self.resolve_places(query):
            if len(out) >= limit:
                break
            out.extend(self.fetch_place_photos(place))
        return out[: max(0, int(limit))]

    def download(self, candidate: MediaCandidate, max_bytes: Optional[int] = None, timeout_sec: float = 30) -> bytes:
        # Place Photo requests are billed API calls: governed, and the key is added here
        # so it never appears in candidate URLs or stored metadata.
        self.governor.reserve(self.provider)
        self.request_count += 1
        return self._download_url(candidate, candidate.download_url, {"key": self.api_key}, max_bytes, timeout_sec)


_SOURCE_CLASSES = {
    Provider.PEXELS: PexelsSource,
    Provider.PIXABAY: PixabaySource,
    Provider.GOOGLE_PLACES: GooglePlacesSource,
}


def create_media_sources(
    api_keys: Dict[Provider, str],
    governor: RateLimitGovernor,
    session: Optional[requests.Session] = None,
    search_timeout_sec: float = 10,
    places_timeout_sec: float = 15,
    min_width: int = MIN_WIDTH,
    min_height: int = MIN_HEIGHT,
    max_video_height: int = MAX_VIDEO_HEIGHT,
    verbose: bool = False,
) -> Dict[Provider, MediaSource]:
    """
    Factory: one adapter per provider that has an API key, in default priority order.
    """
    session = session if session is not None else requests.Session()
    sources: Dict[Provider, MediaSource] = {}
    for provider in DEFAULT_PROVIDER_PRIORITY:
        key = str((api_keys or {}).get(provider) or "").strip()
        if not key:
            if verbose:
                print(f"⚠️  {provider.value}: API key not configured, skipping")
            continue
        common = dict(session=session, min_width=min_width, min_height=min_height, verbose=verbose)
        if provider == Provider.GOOGLE_PLACES:
            sources[provider] = GooglePlacesSource(key, governor, timeout_sec=places_timeout_sec, **common)
        else:
            sources[provider] = _SOURCE_CLASSES[provider](
                key, governor, timeout_sec=search_timeout_sec, max_video_height=max_video_height, **common
            )
    return sources
