"""
Acquisition Validator - the single gate real content passes through.

For each selected candidate:
1. URL dedup check (before any download)
2. download (through the owning MediaSource)
3. size gate (min / max bytes)
4. magic-number check (JPEG/PNG/GIF/WEBP, MP4/MOV, WEBM) - rejects HTML error pages
5. sha256 content hash -> dedup check
6. image quality gate (resolution, black/flat frames)
7. atomic commit of hash + URLs into ProjectDedupState

Nothing is marked "used" until step 7, so a failed download never poisons dedup state.
"""

from __future__ import annotations

import hashlib
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from asset_quality import inspect_image_bytes
from media_models import (
    DuplicateContent,
    MediaAsset,
    MediaKind,
    ProjectDedupState,
    Provider,
    ProviderError,
    RateLimitExceeded,
    ScoredCandidate,
    ValidationFailure,
)
from media_sources import MediaSource


DEFAULT_MIN_BYTES = 10_000
DEFAULT_MAX_BYTES = 100 * 1024 * 1024

# ISO-BMFF brands that are still images, not video
_IMAGE_FTYP_BRANDS = (b"heic", b"heix", b"mif1", b"msf1", b"avif")


def sniff_media_type(data: bytes) -> Optional[str]:
    """
    Content type from header bytes, or None when it is not a supported image/video.
    """
    if not data or len(data) < 12:
        return None
    head = data[:16]
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith(b"GIF87a") or head.startswith(b"GIF89a"):
        return "image/gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand in _IMAGE_FTYP_BRANDS:
            return None
        if brand == b"qt  ":
            return "video/quicktime"
        return "video/mp4"
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/webm"
    return None


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _kind_of(content_type: str) -> MediaKind:
    return MediaKind.VIDEO if content_type.startswith("video/") else MediaKind.IMAGE


class AcquisitionValidator:
    def __init__(
        self,
        sources: Mapping[Provider, MediaSource],
        dedup_state: ProjectDedupState,
        min_bytes: int = DEFAULT_MIN_BYTES,
        max_bytes: int = DEFAULT_MAX_BYTES,
        min_width: int = 1280,
        min_height: int = 720,
        download_timeout_sec: float = 30,
        max_workers: int = 3,
        check_image_quality: bool = True,
        clock: Callable[[], float] = time.time,
        verbose: bool = False,
    ):
        self.sources = sources
        self.dedup_state = dedup_state
        self.min_bytes = int(min_bytes)
        self.max_bytes = int(max_bytes)
        self.min_width = int(min_width)
        self.min_height = int(min_height)
        self.download_timeout_sec = float(download_timeout_sec)
        self.max_workers = max(1, int(max_workers))
        self.check_image_quality = check_image_quality
        self.clock = clock
        self.verbose = verbose

    def _download(self, scored: ScoredCandidate) -> bytes:
        candidate = scored.candidate
        source = self.sources.get(candidate.provider)
        if source is None:
            raise ValidationFailure("no_source", candidate, message=f"no source for provider {candidate.provider.value}")
        try:
            return source.download(candidate, max_bytes=self.max_bytes, timeout_sec=self.download_timeout_sec)
        except RateLimitExceeded as e:
            raise ValidationFailure("download_rate_limited", candidate, message=str(e)) from e
        except ProviderError as e:
            raise ValidationFailure("download_failed", candidate, message=str(e)) from e

    def acquire(self, scored: ScoredCandidate) -> MediaAsset:
        """
        Download + validate + commit one candidate.
        Raises ValidationFailure (or DuplicateContent) on rejection.
        """
        candidate = scored.candidate
        if self.dedup_state.any_url_used(candidate):
            raise DuplicateContent("url_already_used", candidate)

        if self.verbose:
            print(f"📥 Downloading {candidate.id} ({candidate.provider.value}, {candidate.kind.value})")
        data = self._download(scored)

        if len(data) < self.min_bytes:
            raise ValidationFailure("too_small", candidate, message=f"{len(data)} bytes < {self.min_bytes}")
        if len(data) > self.max_bytes:
            raise ValidationFailure("too_large", candidate, message=f"{len(data)} bytes > {self.max_bytes}")

        content_type = sniff_media_type(data)
        if content_type is None:
            raise ValidationFailure("unrecognized_format", candidate, message=f"header {data[:8]!r} is not image/video")
        if _kind_of(content_type) != candidate.kind:
            raise ValidationFailure("kind_mismatch", candidate, message=f"expected {candidate.kind.value}, got {content_type}")

        digest = content_hash(data)
        if self.dedup_state.is_hash_used(digest):
            raise DuplicateContent("content_hash_used", candidate)

        if candidate.kind == MediaKind.IMAGE and self.check_image_quality:
            reject, report = inspect_image_bytes(data, self.min_width, self.min_height)
            if reject:
                raise ValidationFailure(str(report.get("reason") or "image_rejected"), candidate)

        if not self.dedup_state.commit(digest, candidate.urls()):
            raise DuplicateContent("commit_conflict", candidate)

        if self.verbose:
            print(f"✅ Accepted {candidate.id}: {len(data)} bytes, {content_type}, sha256={digest[:12]}")
        return MediaAsset(
            data=data,
            provider=candidate.provider,
            kind=candidate.kind,
            content_type=content_type,
            content_hash=digest,
            attribution=candidate.attribution,
            source_candidate=candidate,
            scored=scored,
            synthetic=False,
        )

    def _try_acquire(self, scored: ScoredCandidate) -> Tuple[Optional[MediaAsset], Optional[ValidationFailure]]:
        try:
            return self.acquire(scored), None
        except ValidationFailure as e:
            if self.verbose:
                print(f"⚠️  Rejected {scored.candidate.id}: {e.reason}")
            return None, e

    def acquire_many(
        self,
        scored_list: Sequence[ScoredCandidate],
        needed: int,
        deadline: Optional[float] = None,
    ) -> Tuple[List[MediaAsset], List[ValidationFailure]]:
        """
        Walk candidates in rank order, downloading up to max_workers at a time,
        until `needed` assets are accepted, the list runs out, or the deadline passes.
        Returns (accepted assets in rank order, rejections).
        """
        accepted: List[Tuple[int, MediaAsset]] = []
        failures: List[ValidationFailure] = []
        pos = 0
        items = list(scored_list)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while len(accepted) < needed and pos < len(items):
                if deadline is not None and self.clock() >= deadline:
                    if self.verbose:
                        print(f"⏳ Download deadline reached, {len(items) - pos} candidate(s) not tried")
                    break
                batch_size = min(self.max_workers, needed - len(accepted), len(items) - pos)
                batch = list(enumerate(items[pos : pos + batch_size], start=pos))
                pos += batch_size
                futures = [(i, executor.submit(self._try_acquire, s)) for i, s in batch]
                for i, fut in futures:
                    asset, failure = fut.result()
                    if asset is not None:
                        accepted.append((i, asset))
                    elif failure is not None:
                        failures.append(failure)

        accepted.sort(key=lambda pair: pair[0])
        return [a for _, a in accepted[:needed]], failures

    @staticmethod
    def rejection_counts(failures: Sequence[ValidationFailure]) -> Dict[str, int]:
        out: Dict[str, Any] = {}
        for f in failures:
            out[f.reason] = out.get(f.reason, 0) + 1
        return out
