"""
Media Models - shared data shapes and error taxonomy for media curation.

Everything the acquisition engine passes between its parts lives here:
- MediaCandidate / ScoredCandidate (ephemeral search results)
- SceneMediaRequest (read-only input from the script stage)
- ProjectDedupState (the only state shared across scenes)
- ProviderRateWindow (per-provider rate bookkeeping)
- SceneProcessingRecord (diagnostics)
- MediaAsset (what the caller finally receives)
"""

from __future__ import annotations

import re
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class Provider(str, Enum):
    PEXELS = "pexels"                # broad stock photo/video (StockA)
    PIXABAY = "pixabay"              # broad stock photo/video (StockB)
    GOOGLE_PLACES = "google_places"  # location-aware place photos (PlaceSearch)
    FALLBACK = "fallback"            # synthetic assets only, never searched


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


# Default search priority (before per-scene rotation)
DEFAULT_PROVIDER_PRIORITY: Tuple[Provider, ...] = (
    Provider.PEXELS,
    Provider.PIXABAY,
    Provider.GOOGLE_PLACES,
)

_WORD_RE = re.compile(r"\w+")


# ============================================================================
# Errors
# ============================================================================

class MediaCuratorError(RuntimeError):
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = str(code or "MEDIA_ERROR")
        self.details = details or {}
        super().__init__(f"{self.code}: {message}")


class RateLimitExceeded(MediaCuratorError):
    """Provider budget is spent. Wait `retry_after` seconds or switch provider."""

    def __init__(self, provider: Provider, retry_after: float):
        self.provider = provider
        self.retry_after = max(0.0, float(retry_after or 0.0))
        super().__init__(
            "RATE_LIMIT_EXCEEDED",
            f"{_provider_name(provider)} budget exhausted, retry after {self.retry_after:.1f}s",
            {"provider": _provider_name(provider), "retry_after": self.retry_after},
        )


class ProviderError(MediaCuratorError):
    """Transport / auth / 5xx failure. Means "provider broken", not "no content"."""

    def __init__(self, provider: Provider, cause: Any, http_status: Optional[int] = None):
        self.provider = provider
        self.cause = cause
        self.http_status = http_status
        super().__init__(
            "PROVIDER_ERROR",
            f"{_provider_name(provider)} failed: {cause}",
            {"provider": _provider_name(provider), "http_status": http_status, "cause": str(cause)[:300]},
        )


class ValidationFailure(MediaCuratorError):
    """Downloaded bytes were rejected; try the next scored candidate."""

    def __init__(self, reason: str, candidate: Optional["MediaCandidate"] = None, message: str = ""):
        self.reason = str(reason)
        self.candidate = candidate
        cid = candidate.id if candidate is not None else None
        super().__init__(
            "VALIDATION_FAILURE",
            message or f"candidate {cid} rejected ({self.reason})",
            {"reason": self.reason, "candidate_id": cid},
        )


class DuplicateContent(ValidationFailure):
    """Candidate URL or its bytes were already used in this project. A normal filtering outcome."""

    def __init__(self, reason: str, candidate: Optional["MediaCandidate"] = None):
        super().__init__(reason, candidate, message=f"duplicate content ({reason})")
        self.code = "DUPLICATE_CONTENT"


class AcquisitionExhausted(MediaCuratorError):
    def __init__(self, scene_number: int, attempts: int, failed_providers: Iterable[str] = ()):
        self.scene_number = int(scene_number)
        self.attempts = int(attempts)
        self.failed_providers = sorted(set(failed_providers))
        super().__init__(
            "ACQUISITION_EXHAUSTED",
            f"scene {self.scene_number}: no valid unique content after {self.attempts} attempt(s)",
            {"scene_number": self.scene_number, "attempts": self.attempts, "failed_providers": self.failed_providers},
        )


def _provider_name(provider: Any) -> str:
    return provider.value if isinstance(provider, Provider) else str(provider)


# ============================================================================
# Search results
# ============================================================================

@dataclass(frozen=True)
class MediaCandidate:
    id: str
    provider: Provider
    kind: MediaKind
    download_url: str
    page_url: str
    width: int
    height: int
    duration_sec: Optional[float] = None
    attribution: Optional[str] = None
    tags: Tuple[str, ...] = ()
    description: str = ""
    # Provider-specific extras used by scoring (place rating, place types, likes, ...)
    bonus_fields: Dict[str, Any] = field(default_factory=dict, compare=False)

    def urls(self) -> List[str]:
        return [u for u in (self.download_url, self.page_url) if u]

    @property
    def aspect_ratio(self) -> float:
        if not self.height:
            return 0.0
        return float(self.width) / float(self.height)

    def text_blob(self) -> str:
        return " ".join([*self.tags, self.description]).lower()

    def text_tokens(self) -> set:
        return set(_WORD_RE.findall(self.text_blob()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider.value,
            "kind": self.kind.value,
            "downloadUrl": self.download_url,
            "pageUrl": self.page_url,
            "width": self.width,
            "height": self.height,
            "durationSeconds": self.duration_sec,
            "attribution": self.attribution,
            "tags": list(self.tags),
            "description": self.description,
        }


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: MediaCandidate
    relevance_score: float
    quality_score: float
    source_score: float
    total_score: float

    @property
    def provider(self) -> Provider:
        return self.candidate.provider

    @property
    def kind(self) -> MediaKind:
        return self.candidate.kind

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.candidate.to_dict(),
            "relevanceScore": round(self.relevance_score, 3),
            "qualityScore": round(self.quality_score, 3),
            "sourceScore": round(self.source_score, 3),
            "totalScore": round(self.total_score, 3),
        }


# ============================================================================
# Scene input
# ============================================================================

@dataclass(frozen=True)
class ScenePacing:
    visuals_needed: int
    average_visual_duration_sec: float
    pacing_strategy: str


@dataclass(frozen=True)
class SceneContext:
    purpose: str
    emotional_tone: str
    title: str
    duration_sec: float


@dataclass(frozen=True)
class SceneMediaRequest:
    scene_number: int
    search_keywords: Tuple[str, ...]
    pacing: ScenePacing
    scene_context: SceneContext

    def primary_query(self) -> str:
        for kw in self.search_keywords:
            if str(kw or "").strip():
                return str(kw).strip()
        return (self.scene_context.title or "").strip()

    def keyword_tokens(self) -> List[str]:
        tokens: List[str] = []
        for kw in self.search_keywords:
            for tok in _WORD_RE.findall(str(kw or "").lower()):
                if len(tok) > 1 and tok not in tokens:
                    tokens.append(tok)
        return tokens


# ============================================================================
# Cross-scene state
# ============================================================================

@dataclass
class ProjectDedupState:
    """
    Append-only per-project "already used" sets.
    commit() is an atomic check-and-insert so concurrent downloads cannot double-accept.
    """

    used_content_hashes: set = field(default_factory=set)
    used_urls: set = field(default_factory=set)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def is_url_used(self, url: str) -> bool:
        with self._lock:
            return bool(url) and url in self.used_urls

    def any_url_used(self, candidate: MediaCandidate) -> bool:
        with self._lock:
            return any(u in self.used_urls for u in candidate.urls())

    def is_hash_used(self, content_hash: str) -> bool:
        with self._lock:
            return content_hash in self.used_content_hashes

    def commit(self, content_hash: str, urls: Iterable[str]) -> bool:
        urls = [u for u in urls if u]
        with self._lock:
            if content_hash in self.used_content_hashes:
                return False
            if any(u in self.used_urls for u in urls):
                return False
            self.used_content_hashes.add(content_hash)
            self.used_urls.update(urls)
            return True

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "usedContentHashes": sorted(self.used_content_hashes),
                "usedUrls": sorted(self.used_urls),
            }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProjectDedupState":
        data = data or {}
        return cls(
            used_content_hashes=set(data.get("usedContentHashes") or []),
            used_urls=set(data.get("usedUrls") or []),
        )


@dataclass(frozen=True)
class RateBudget:
    limit: int
    window_sec: float
    min_interval_sec: float = 0.0


@dataclass
class ProviderRateWindow:
    """
    Sliding-log window: `request_times` holds the grant times still inside the window;
    window_start_time / requests_in_window are derived from it on every update.
    """

    provider: Provider
    window_start_time: float = 0.0
    requests_in_window: int = 0
    last_request_time: float = 0.0
    request_times: deque = field(default_factory=deque, repr=False)

    def expire(self, now: float, window_sec: float) -> None:
        while self.request_times and self.request_times[0] <= now - window_sec:
            self.request_times.popleft()
        self.requests_in_window = len(self.request_times)
        self.window_start_time = self.request_times[0] if self.request_times else now


@dataclass(frozen=True)
class SceneProcessingRecord:
    scene_number: int
    success: bool
    duration_ms: int
    query_used: str
    provider_order_used: Tuple[Provider, ...]
    result_count: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sceneNumber": self.scene_number,
            "success": self.success,
            "durationMs": self.duration_ms,
            "queryUsed": self.query_used,
            "providerOrderUsed": [p.value for p in self.provider_order_used],
            "resultCount": self.result_count,
            "error": self.error,
        }


# ============================================================================
# Output
# ============================================================================

_CONTENT_TYPE_EXT = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
}


@dataclass(frozen=True)
class MediaAsset:
    data: bytes = field(repr=False)
    provider: Provider
    kind: MediaKind
    content_type: str
    content_hash: str
    attribution: Optional[str] = None
    source_candidate: Optional[MediaCandidate] = None
    scored: Optional[ScoredCandidate] = None
    synthetic: bool = False
    fallback_strategy: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return _CONTENT_TYPE_EXT.get(self.content_type, "bin")

    @property
    def asset_id(self) -> str:
        if self.source_candidate is not None:
            return self.source_candidate.id
        return f"{self.fallback_strategy or 'synthetic'}-{self.content_hash[:12]}"

    def metadata(self) -> Dict[str, Any]:
        """JSON-safe description (bytes excluded)."""
        out: Dict[str, Any] = {
            "assetId": self.asset_id,
            "provider": self.provider.value,
            "kind": self.kind.value,
            "contentType": self.content_type,
            "contentHash": self.content_hash,
            "size": self.size,
            "attribution": self.attribution,
            "synthetic": self.synthetic,
        }
        if self.fallback_strategy:
            out["fallbackStrategy"] = self.fallback_strategy
        if self.source_candidate is not None:
            out["sourceCandidate"] = self.source_candidate.to_dict()
        if self.scored is not None:
            out["relevanceScore"] = round(self.scored.relevance_score, 3)
            out["qualityScore"] = round(self.scored.quality_score, 3)
            out["totalScore"] = round(self.scored.total_score, 3)
        return out
