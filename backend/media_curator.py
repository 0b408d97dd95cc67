"""
Media Curator - per-scene acquisition state machine + project run.

Per scene:
    NotStarted -> Searching -> Scoring -> Validating -> {Satisfied | PartiallySatisfied | Exhausted}

- Searching: rotated providers (through the governor), primary expanded query first,
  secondary keywords while the pool is thin. RateLimitExceeded / ProviderError drop the
  provider for the rest of the scene.
- Scoring: CandidateSelector against the project-wide dedup state.
- Validating: AcquisitionValidator; rejected candidates are replaced by the next-best ones.
- Exhausted (no real asset after every retry) -> FallbackGenerator fills the target.
  PartiallySatisfied is kept as-is.

Scenes are processed sequentially; ProjectDedupState is the only state shared between them.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import requests

from acquisition_validator import AcquisitionValidator
from candidate_selector import CandidateSelector, VIDEO_PACING_HINTS
from curator_settings import CuratorSettings
from fallback_generator import FallbackGenerator
from media_models import (
    DEFAULT_PROVIDER_PRIORITY,
    AcquisitionExhausted,
    MediaAsset,
    MediaCandidate,
    MediaCuratorError,
    MediaKind,
    ProjectDedupState,
    Provider,
    ProviderError,
    RateLimitExceeded,
    SceneContext,
    SceneMediaRequest,
    ScenePacing,
)
from media_sources import MediaSource, create_media_sources
from media_store import MediaStore
from rate_limit_governor import RateLimitGovernor
from retry_policy import RetryPolicy
from scene_scheduler import SceneScheduler


STATE_SATISFIED = "satisfied"
STATE_PARTIAL = "partially_satisfied"
STATE_EXHAUSTED = "exhausted"

DEFAULT_SEARCH_LIMIT = 15
MAX_SECONDARY_KEYWORDS = 2

MIN_VISUALS = 2
MAX_VISUALS = 8


class SceneAborted(MediaCuratorError):
    """Scene cannot make progress (deadline passed or no usable provider left). Not retried."""

    def __init__(self, scene_number: int, reason: str):
        self.scene_number = int(scene_number)
        self.reason = str(reason)
        super().__init__("SCENE_ABORTED", f"scene {self.scene_number}: {self.reason}", {"scene_number": self.scene_number, "reason": self.reason})


# ============================================================================
# Scene input helpers
# ============================================================================

def calculate_visual_pacing(purpose: str, duration_sec: float) -> ScenePacing:
    """
    Visual count + per-visual duration from the scene's purpose:
    hook 3 s (max 5), conclusion 5 s (max 4), everything else 4 s (max 6); always 2..8 visuals.
    """
    purpose = str(purpose or "").lower()
    try:
        duration = max(0.0, float(duration_sec or 0))
    except (TypeError, ValueError):
        duration = 0.0

    if "hook" in purpose:
        per_visual, cap, strategy = 3.0, 5, "fast-engagement"
    elif "conclusion" in purpose:
        per_visual, cap, strategy = 5.0, 4, "slow-conclusion"
    else:
        per_visual, cap, strategy = 4.0, 6, "balanced-content"

    visuals = min(cap, int(round(duration / per_visual))) if duration > 0 else MIN_VISUALS
    visuals = max(MIN_VISUALS, min(MAX_VISUALS, visuals))
    avg = round(duration / visuals, 2) if duration > 0 else per_visual
    return ScenePacing(visuals_needed=visuals, average_visual_duration_sec=avg, pacing_strategy=strategy)


def scene_request_from_dict(scene: Mapping[str, Any], fallback_number: int = 1) -> SceneMediaRequest:
    """
    Scene JSON from the script stage -> SceneMediaRequest.
    Keywords: mediaRequirements.searchKeywords, visualRequirements.searchKeywords, then [title].
    """
    try:
        number = int(scene.get("sceneNumber") or fallback_number)
    except (TypeError, ValueError):
        number = int(fallback_number)
    title = str(scene.get("title") or "").strip()
    purpose = str(scene.get("purpose") or "").strip()
    tone = str(scene.get("emotionalTone") or scene.get("tone") or "").strip()
    try:
        duration = float(scene.get("duration") or scene.get("durationSeconds") or 0)
    except (TypeError, ValueError):
        duration = 0.0

    keywords: List[str] = []
    for block in ("mediaRequirements", "visualRequirements"):
        raw = (scene.get(block) or {}).get("searchKeywords") if isinstance(scene.get(block), dict) else None
        if raw:
            keywords = [str(k).strip() for k in raw if str(k or "").strip()]
            if keywords:
                break
    if not keywords and scene.get("searchKeywords"):
        keywords = [str(k).strip() for k in scene.get("searchKeywords") or [] if str(k or "").strip()]
    if not keywords and title:
        keywords = [title]

    raw_pacing = scene.get("pacing") if isinstance(scene.get("pacing"), dict) else None
    if raw_pacing and raw_pacing.get("visualsNeeded"):
        pacing = ScenePacing(
            visuals_needed=max(1, int(raw_pacing.get("visualsNeeded"))),
            average_visual_duration_sec=float(raw_pacing.get("averageVisualDurationSeconds") or 0),
            pacing_strategy=str(raw_pacing.get("pacingStrategy") or "balanced-content"),
        )
    else:
        pacing = calculate_visual_pacing(purpose, duration)

    return SceneMediaRequest(
        scene_number=number,
        search_keywords=tuple(keywords),
        pacing=pacing,
        scene_context=SceneContext(purpose=purpose, emotional_tone=tone, title=title, duration_sec=duration),
    )


def build_storage_key(project_id: str, scene_number: int, kind: MediaKind, index: int, ext: str) -> str:
    return f"project/{project_id}/scene-{int(scene_number)}/{kind.value}/{int(index)}.{ext}"


# ============================================================================
# Results
# ============================================================================

@dataclass
class SceneResult:
    request: SceneMediaRequest
    state: str
    assets: List[MediaAsset]
    query_used: str = ""
    provider_order: List[Provider] = field(default_factory=list)
    failed_providers: Dict[str, str] = field(default_factory=dict)
    attempts: int = 0
    rejections: Dict[str, int] = field(default_factory=dict)
    candidates_found: int = 0
    error: Optional[str] = None

    @property
    def scene_number(self) -> int:
        return self.request.scene_number

    @property
    def real_assets(self) -> int:
        return sum(1 for a in self.assets if not a.synthetic)

    @property
    def synthetic_assets(self) -> int:
        return sum(1 for a in self.assets if a.synthetic)

    @property
    def real_ratio(self) -> float:
        if not self.assets:
            return 0.0
        return round(self.real_assets / float(len(self.assets)), 3)

    def report(self) -> Dict[str, Any]:
        return {
            "sceneNumber": self.scene_number,
            "state": self.state,
            "realAssets": self.real_assets,
            "syntheticAssets": self.synthetic_assets,
            "realRatio": self.real_ratio,
            "failedProviders": sorted(self.failed_providers),
            "providerErrors": dict(self.failed_providers),
            "queryUsed": self.query_used,
            "providerOrder": [p.value for p in self.provider_order],
            "attempts": self.attempts,
            "rejections": dict(self.rejections),
            "candidatesFound": self.candidates_found,
            "error": self.error,
        }

    def media_context(self, project_id: str) -> Dict[str, Any]:
        """Scene entry for media-context.json: report + timed media sequence."""
        n = len(self.assets)
        duration = float(self.request.scene_context.duration_sec or 0)
        per_visual = round(duration / n, 2) if n and duration > 0 else float(self.request.pacing.average_visual_duration_sec or 0)

        sequence = []
        for i, asset in enumerate(self.assets):
            sequence.append({
                "sequenceOrder": i + 1,
                "assetId": asset.asset_id,
                "kind": asset.kind.value,
                "provider": asset.provider.value,
                "synthetic": asset.synthetic,
                "fallbackStrategy": asset.fallback_strategy,
                "sceneStartTime": round(i * per_visual, 2),
                "sceneDuration": per_visual,
                "visualType": "primary" if i == 0 else "supporting",
                "transitionType": "fade-in" if i == 0 else "crossfade",
                "relevanceScore": round(asset.scored.relevance_score, 3) if asset.scored else None,
                "qualityScore": round(asset.scored.quality_score, 3) if asset.scored else None,
                "contentHash": asset.content_hash,
                "attribution": asset.attribution,
                "storageKey": build_storage_key(project_id, self.scene_number, asset.kind, i + 1, asset.extension),
            })

        return {
            **self.report(),
            "title": self.request.scene_context.title,
            "purpose": self.request.scene_context.purpose,
            "pacing": {
                "visualsNeeded": self.request.pacing.visuals_needed,
                "averageVisualDurationSeconds": self.request.pacing.average_visual_duration_sec,
                "pacingStrategy": self.request.pacing.pacing_strategy,
            },
            "mediaSequence": sequence,
            "industryCompliance": {
                "visualCount": n,
                "averageVisualDuration": per_visual,
                "pacingCompliant": MIN_VISUALS <= n <= MAX_VISUALS,
                "timingOptimal": 3.0 <= per_visual <= 6.0,
            },
        }


@dataclass
class ProjectResult:
    project_id: str
    scenes: List[SceneResult]
    records: List[Dict[str, Any]] = field(default_factory=list)
    rate_limits: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_assets(self) -> int:
        return sum(len(s.assets) for s in self.scenes)

    @property
    def real_downloads(self) -> int:
        return sum(s.real_assets for s in self.scenes)

    def report(self) -> Dict[str, Any]:
        total = self.total_assets
        failed = sorted({p for s in self.scenes for p in s.failed_providers})
        return {
            "projectId": self.project_id,
            "totalScenes": len(self.scenes),
            "totalAssets": total,
            "realDownloads": self.real_downloads,
            "syntheticAssets": total - self.real_downloads,
            "realDownloadRate": round(self.real_downloads / float(total), 3) if total else 0.0,
            "failedProviders": failed,
            "scenes": [s.report() for s in self.scenes],
            "sceneRecords": list(self.records),
            "rateLimits": dict(self.rate_limits),
        }

    def media_context(self) -> Dict[str, Any]:
        return {
            **{k: v for k, v in self.report().items() if k != "scenes"},
            "scenes": [s.media_context(self.project_id) for s in self.scenes],
        }


@dataclass
class _SceneDiagnostics:
    failed_providers: Dict[str, str] = field(default_factory=dict)
    rejections: Dict[str, int] = field(default_factory=dict)
    attempts: int = 0
    candidates_found: int = 0

    def provider_failed(self, provider: Provider) -> bool:
        return provider.value in self.failed_providers


# ============================================================================
# Curator
# ============================================================================

class MediaCurator:
    def __init__(
        self,
        sources: Mapping[Provider, MediaSource],
        governor: RateLimitGovernor,
        dedup_state: Optional[ProjectDedupState] = None,
        scheduler: Optional[SceneScheduler] = None,
        selector: Optional[CandidateSelector] = None,
        validator: Optional[AcquisitionValidator] = None,
        fallback: Optional[FallbackGenerator] = None,
        retry_policy: Optional[RetryPolicy] = None,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
        scene_timeout_sec: float = 120.0,
        clock: Callable[[], float] = time.time,
        verbose: bool = False,
    ):
        self.sources: Dict[Provider, MediaSource] = dict(sources)
        self.governor = governor
        self.dedup_state = dedup_state if dedup_state is not None else ProjectDedupState()
        self.providers: Tuple[Provider, ...] = tuple(p for p in DEFAULT_PROVIDER_PRIORITY if p in self.sources)
        self.scheduler = scheduler if scheduler is not None else SceneScheduler(providers=self.providers, verbose=verbose)
        self.selector = selector if selector is not None else CandidateSelector(verbose=verbose)
        self.validator = validator if validator is not None else AcquisitionValidator(self.sources, self.dedup_state, verbose=verbose)
        self.fallback = fallback if fallback is not None else FallbackGenerator(dedup_state=self.dedup_state, verbose=verbose)
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self.search_limit = max(1, int(search_limit))
        self.scene_timeout_sec = float(scene_timeout_sec)
        self.clock = clock
        self.verbose = verbose

    @classmethod
    def from_settings(
        cls,
        settings: CuratorSettings,
        dedup_state: Optional[ProjectDedupState] = None,
        session: Optional[requests.Session] = None,
        governor: Optional[RateLimitGovernor] = None,
        sources: Optional[Mapping[Provider, MediaSource]] = None,
        verbose: bool = False,
    ) -> "MediaCurator":
        """
        Pass the process-wide `governor` (and the `sources` bound to it) so rate windows
        carry over between runs; without them a fresh governor is built.
        """
        session = session if session is not None else requests.Session()
        dedup_state = dedup_state if dedup_state is not None else ProjectDedupState()
        if governor is None:
            governor = RateLimitGovernor(budgets=settings.rate_budgets, verbose=verbose)
        if sources is None:
            sources = create_media_sources(
                settings.api_keys,
                governor,
                session=session,
                search_timeout_sec=settings.search_timeout_sec,
                places_timeout_sec=settings.places_timeout_sec,
                verbose=verbose,
            )
        sources = dict(sources)
        providers = tuple(p for p in DEFAULT_PROVIDER_PRIORITY if p in sources)
        return cls(
            sources,
            governor,
            dedup_state=dedup_state,
            scheduler=SceneScheduler(
                providers=providers,
                scene_delays_sec=settings.scene_delays_sec,
                expansion_threshold=settings.expansion_threshold,
                early_expansion_probability=settings.early_expansion_probability,
                verbose=verbose,
            ),
            validator=AcquisitionValidator(
                sources,
                dedup_state,
                min_bytes=settings.min_bytes,
                max_bytes=settings.max_bytes,
                download_timeout_sec=settings.download_timeout_sec,
                max_workers=settings.download_workers,
                verbose=verbose,
            ),
            fallback=FallbackGenerator(session=session, dedup_state=dedup_state, timeout_sec=settings.search_timeout_sec, verbose=verbose),
            retry_policy=RetryPolicy(max_attempts=settings.max_attempts, base_delay_sec=settings.retry_base_delay_sec),
            scene_timeout_sec=settings.scene_timeout_sec,
            verbose=verbose,
        )

    # ------------------------------------------------------------------ search

    def _kinds_for(self, provider: Provider, request: SceneMediaRequest) -> List[MediaKind]:
        if provider == Provider.GOOGLE_PLACES:
            return [MediaKind.IMAGE]
        strategy = str(request.pacing.pacing_strategy or "").lower()
        if any(w in strategy for w in VIDEO_PACING_HINTS):
            return [MediaKind.VIDEO, MediaKind.IMAGE]
        return [MediaKind.IMAGE, MediaKind.VIDEO]

    def _search_provider(
        self,
        provider: Provider,
        queries: Sequence[str],
        request: SceneMediaRequest,
        deadline: float,
    ) -> Tuple[List[MediaCandidate], Optional[str]]:
        """All queries x kinds for one provider. Stops at the first provider failure, keeping partial results."""
        source = self.sources[provider]
        out: List[MediaCandidate] = []
        for q in queries:
            for kind in self._kinds_for(provider, request):
                if self.clock() >= deadline:
                    return out, None
                try:
                    out.extend(source.search(q, kind=kind, limit=self.search_limit))
                except RateLimitExceeded as e:
                    if self.verbose:
                        print(f"⏳ {provider.value}: rate limited, retry after {e.retry_after:.0f}s; switching provider")
                    return out, f"rate_limited: retry after {e.retry_after:.0f}s"
                except ProviderError as e:
                    if self.verbose:
                        print(f"⚠️  {provider.value}: {e}")
                    return out, f"provider_error: {e.cause}"
        return out, None

    def _search_all(
        self,
        queries: Sequence[str],
        providers: Sequence[Provider],
        request: SceneMediaRequest,
        deadline: float,
        diag: _SceneDiagnostics,
    ) -> List[MediaCandidate]:
        """Concurrent per-provider search; results merged in rotated provider order."""
        active = [p for p in providers if not diag.provider_failed(p)]
        if not active or not queries:
            return []
        with ThreadPoolExecutor(max_workers=len(active)) as executor:
            futures = [(p, executor.submit(self._search_provider, p, queries, request, deadline)) for p in active]
            results = [(p, f.result()) for p, f in futures]

        merged: List[MediaCandidate] = []
        for provider, (candidates, error) in results:
            merged.extend(candidates)
            if error:
                diag.failed_providers[provider.value] = error
        return merged

    # ------------------------------------------------------------------ scene

    def _run_pass(
        self,
        request: SceneMediaRequest,
        query: str,
        order: List[Provider],
        deadline: float,
        diag: _SceneDiagnostics,
    ) -> List[MediaAsset]:
        needed = request.pacing.visuals_needed
        active = [p for p in order if p in self.sources and not diag.provider_failed(p)]
        if not active:
            raise SceneAborted(request.scene_number, "no usable provider left")
        if self.clock() >= deadline:
            raise SceneAborted(request.scene_number, "scene timeout")

        # Searching
        candidates = self._search_all([query], active, request, deadline, diag)
        if len(candidates) < needed * 2:
            extra = [k for k in request.search_keywords if k.strip() and k.strip().lower() != query.lower()]
            extra = [k for k in extra if k.strip().lower() != request.primary_query().lower()][:MAX_SECONDARY_KEYWORDS]
            candidates.extend(self._search_all(extra, active, request, deadline, diag))
        diag.candidates_found += len(candidates)

        # Scoring + Validating, replacing rejected picks with the next-best ones
        assets: List[MediaAsset] = []
        tried = set()
        while len(assets) < needed and self.clock() < deadline:
            pool = [c for c in candidates if (c.provider, c.id) not in tried]
            picks = self.selector.select(pool, needed - len(assets), request, self.dedup_state, provider_order=order)
            if not picks:
                break
            tried.update((s.provider, s.candidate.id) for s in picks)
            got, failures = self.validator.acquire_many(picks, needed - len(assets), deadline=deadline)
            assets.extend(got)
            for f in failures:
                diag.rejections[f.reason] = diag.rejections.get(f.reason, 0) + 1

        if not assets:
            raise AcquisitionExhausted(request.scene_number, diag.attempts, diag.failed_providers)
        return assets

    def curate_scene(self, scene_index: int, request: SceneMediaRequest) -> SceneResult:
        """
        Never raises for provider/validation trouble: an exhausted scene is filled by
        the fallback generator and reported as such.
        """
        target = max(0, request.pacing.visuals_needed)
        deadline = self.clock() + self.scene_timeout_sec
        diag = _SceneDiagnostics()
        if self.verbose:
            print(f"🎬 Scene {request.scene_number} (index {scene_index}): need {target} visual(s), keywords={list(request.search_keywords)}")

        def _attempt(attempt_index: int) -> List[MediaAsset]:
            diag.attempts = attempt_index + 1
            return self.scheduler.process(
                scene_index,
                request,
                lambda query, order: self._run_pass(request, query, order, deadline, diag),
                providers=self.providers,
                force_expansion=attempt_index > 0,
            )

        def _on_retry(attempt: int, err: BaseException, delay: float) -> None:
            if self.verbose:
                print(f"🔄 Scene {request.scene_number}: nothing acquired, retry {attempt + 1} with expanded query in {delay:.1f}s")

        assets: List[MediaAsset] = []
        error: Optional[str] = None
        if target > 0:
            try:
                assets = self.retry_policy.run(_attempt, retry_on=(AcquisitionExhausted,), on_retry=_on_retry)
            except (AcquisitionExhausted, SceneAborted) as e:
                error = str(e)

        record = self.scheduler.records[-1] if self.scheduler.records else None
        query_used = record.query_used if record and record.scene_number == request.scene_number else request.primary_query()
        order = list(record.provider_order_used) if record and record.scene_number == request.scene_number else list(self.providers)

        if len(assets) >= target:
            state = STATE_SATISFIED
        elif assets:
            state = STATE_PARTIAL
        else:
            state = STATE_EXHAUSTED
            keyword = request.primary_query() or request.scene_context.title
            assets = [self.fallback.generate(keyword, request.scene_context, i) for i in range(target)]

        result = SceneResult(
            request=request,
            state=state,
            assets=assets,
            query_used=query_used,
            provider_order=order,
            failed_providers=dict(diag.failed_providers),
            attempts=diag.attempts,
            rejections=dict(diag.rejections),
            candidates_found=diag.candidates_found,
            error=error,
        )
        if self.verbose:
            mark = "✅" if state == STATE_SATISFIED else "⚠️ "
            print(f"{mark} Scene {request.scene_number}: {state} real={result.real_assets} synthetic={result.synthetic_assets}")
        return result

    def curate_project(self, project_id: str, scene_requests: Sequence[SceneMediaRequest]) -> ProjectResult:
        """Scenes in scene-number order, one at a time, sharing one dedup state."""
        ordered = sorted(scene_requests, key=lambda r: r.scene_number)
        scenes = [self.curate_scene(i, req) for i, req in enumerate(ordered, start=1)]
        result = ProjectResult(
            project_id=project_id,
            scenes=scenes,
            records=[r.to_dict() for r in self.scheduler.records],
            rate_limits=self.governor.status(),
        )
        if self.verbose:
            rep = result.report()
            print(f"✅ Project {project_id}: {rep['realDownloads']}/{rep['totalAssets']} real assets, failed providers={rep['failedProviders']}")
        return result


def scene_requests_from_context(context: Any) -> List[SceneMediaRequest]:
    """Scene context JSON ({"scenes": [...]} or a bare list) -> requests in scene order."""
    scenes = context.get("scenes") if isinstance(context, dict) else context
    out = []
    for i, scene in enumerate(scenes or [], start=1):
        if isinstance(scene, dict):
            out.append(scene_request_from_dict(scene, fallback_number=i))
    return sorted(out, key=lambda r: r.scene_number)


def curate_stored_project(
    store: MediaStore,
    project_id: str,
    settings: CuratorSettings,
    session: Optional[requests.Session] = None,
    governor: Optional[RateLimitGovernor] = None,
    sources: Optional[Mapping[Provider, MediaSource]] = None,
    verbose: bool = False,
) -> Dict[str, Any]:
    """
    Read scene context -> curate every scene -> persist assets, media-context.json
    and dedup state. Returns the project report (with storage keys per asset).
    Raises FileNotFoundError when the project has no scene context, ValueError when it has no scenes.
    """
    context = store.read_scene_context(project_id)
    scene_requests = scene_requests_from_context(context)
    if not scene_requests:
        raise ValueError(f"project {project_id}: scene context has no scenes")

    dedup_state = store.read_dedup_state(project_id)
    curator = MediaCurator.from_settings(
        settings,
        dedup_state=dedup_state,
        session=session,
        governor=governor,
        sources=sources,
        verbose=verbose,
    )
    result = curator.curate_project(project_id, scene_requests)

    media_context = result.media_context()
    for scene_result, scene_ctx in zip(result.scenes, media_context["scenes"]):
        for asset, entry in zip(scene_result.assets, scene_ctx["mediaSequence"]):
            store.save_asset(entry["storageKey"], asset.data)
    store.write_media_context(project_id, media_context)
    store.write_dedup_state(project_id, dedup_state)

    if verbose:
        print(f"💾 Saved media context: {store.media_context_path(project_id)}")
    return {**result.report(), "mediaContextPath": store.media_context_path(project_id)}
