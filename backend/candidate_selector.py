"""
Candidate Selector - scoring and diversity-constrained selection for one scene.

Input: raw MediaCandidate list from every provider queried for the scene.
Steps:
- pre-filter anything whose page/download URL is already used in the project
- score: relevance (0-100), quality (0-100), source (0-100)
- total = relevance * 0.5 + quality * 0.3 + source * 0.2
- rank (deterministic: ties broken by provider order, then candidate id)
- diversity: first half of the slots take at most one candidate per (provider, kind)

Scoring is pure; same inputs -> same ranked output.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set, Tuple

from media_models import (
    DEFAULT_PROVIDER_PRIORITY,
    MediaCandidate,
    MediaKind,
    ProjectDedupState,
    Provider,
    SceneMediaRequest,
    ScoredCandidate,
)


RELEVANCE_WEIGHT = 0.5
QUALITY_WEIGHT = 0.3
SOURCE_WEIGHT = 0.2

# Pacing strategies that favour motion
VIDEO_PACING_HINTS = ("fast", "dynamic", "engagement", "hook", "action")
_TRAVEL_HINTS = ("travel", "destination", "city", "landmark", "tour", "visit", "trip", "place")


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


def _relevance_score(candidate: MediaCandidate, request: SceneMediaRequest) -> float:
    """
    base 50
    + up to 30 for keyword overlap with tags/description
    + 10 when the kind matches the pacing strategy
    + place bonus (travel-style scenes, rating >= 4.5, tourist_attraction type)
    """
    score = 50.0

    tokens = request.keyword_tokens()
    if tokens:
        words = candidate.text_tokens()
        hits = sum(1 for t in tokens if t in words)
        score += 30.0 * hits / len(tokens)

    strategy = str(request.pacing.pacing_strategy or "").lower()
    wants_video = any(w in strategy for w in VIDEO_PACING_HINTS)
    if wants_video and candidate.kind == MediaKind.VIDEO:
        score += 10.0
    elif not wants_video and candidate.kind == MediaKind.IMAGE:
        score += 5.0

    if candidate.provider == Provider.GOOGLE_PLACES:
        ctx = request.scene_context
        scene_text = " ".join([ctx.purpose or "", ctx.title or "", *request.search_keywords]).lower()
        if any(h in scene_text for h in _TRAVEL_HINTS):
            score += 10.0
        else:
            score += 5.0
        rating = candidate.bonus_fields.get("rating")
        if isinstance(rating, (int, float)) and rating >= 4.5:
            score += 5.0
        elif isinstance(rating, (int, float)) and rating >= 4.0:
            score += 3.0
        if "tourist_attraction" in (candidate.bonus_fields.get("place_types") or []):
            score += 5.0

    return _clamp(score)


def _quality_score(candidate: MediaCandidate) -> float:
    """
    base 50
    + 25 for width >= 1920, 15 for width >= 1280
    + 15 for landscape aspect ratio 1.5 - 2.0
    + 10 for video clips lasting 5 - 30 s
    """
    score = 50.0

    if candidate.width >= 1920:
        score += 25.0
    elif candidate.width >= 1280:
        score += 15.0

    if 1.5 <= candidate.aspect_ratio <= 2.0:
        score += 15.0

    if candidate.kind == MediaKind.VIDEO and candidate.duration_sec is not None:
        if 5.0 <= candidate.duration_sec <= 30.0:
            score += 10.0

    return _clamp(score)


def _source_score(candidate: MediaCandidate, provider_order: Sequence[Provider]) -> float:
    """Earlier position in this scene's rotated order scores higher; places always get the top tier."""
    if candidate.provider == Provider.GOOGLE_PLACES:
        return 100.0
    order = list(provider_order)
    if candidate.provider not in order:
        return 50.0
    pos = order.index(candidate.provider)
    return _clamp(90.0 - 15.0 * pos, lo=40.0)


def score_candidate(
    candidate: MediaCandidate,
    request: SceneMediaRequest,
    provider_order: Sequence[Provider] = DEFAULT_PROVIDER_PRIORITY,
) -> ScoredCandidate:
    relevance = _relevance_score(candidate, request)
    quality = _quality_score(candidate)
    source = _source_score(candidate, provider_order)
    total = relevance * RELEVANCE_WEIGHT + quality * QUALITY_WEIGHT + source * SOURCE_WEIGHT
    return ScoredCandidate(
        candidate=candidate,
        relevance_score=round(relevance, 6),
        quality_score=round(quality, 6),
        source_score=round(source, 6),
        total_score=round(total, 6),
    )


class CandidateSelector:
    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.last_report: Dict[str, int] = {}

    def rank(
        self,
        candidates: Sequence[MediaCandidate],
        request: SceneMediaRequest,
        dedup_state: ProjectDedupState,
        provider_order: Optional[Sequence[Provider]] = None,
    ) -> List[ScoredCandidate]:
        """Pre-filter + score + sort, no diversity constraint."""
        order = list(provider_order) if provider_order else list(DEFAULT_PROVIDER_PRIORITY)
        rank_of = {p: i for i, p in enumerate(order)}

        seen_ids: Set[Tuple[str, str]] = set()
        used = 0
        repeated = 0
        scored: List[ScoredCandidate] = []
        for c in candidates:
            key = (c.provider.value, c.id)
            if key in seen_ids:
                repeated += 1
                continue
            seen_ids.add(key)
            if dedup_state.any_url_used(c):
                used += 1
                continue
            scored.append(score_candidate(c, request, order))

        scored.sort(key=lambda s: (-s.total_score, rank_of.get(s.provider, len(order)), s.candidate.id))
        self.last_report = {
            "input": len(candidates),
            "already_used": used,
            "repeated_in_pool": repeated,
            "scored": len(scored),
        }
        if self.verbose and used:
            print(f"   - Selector: {used} candidate(s) skipped (URL already used in project)")
        return scored

    def select(
        self,
        candidates: Sequence[MediaCandidate],
        target_count: int,
        request: SceneMediaRequest,
        dedup_state: ProjectDedupState,
        provider_order: Optional[Sequence[Provider]] = None,
    ) -> List[ScoredCandidate]:
        """
        Up to target_count scored candidates. Fewer when the filtered pool is smaller;
        the caller decides whether that means retry or fallback.
        """
        target = max(0, int(target_count))
        ranked = self.rank(candidates, request, dedup_state, provider_order)
        if target == 0 or not ranked:
            return []
        return diversity_pick(ranked, target)


def diversity_pick(ranked: Sequence[ScoredCandidate], target_count: int) -> List[ScoredCandidate]:
    """
    Walk the ranked list. While fewer than half of the slots are filled, skip a
    candidate whose (provider, kind) was already picked; then fill by rank alone.
    """
    diverse_slots = (target_count + 1) // 2
    picked: List[ScoredCandidate] = []
    picked_ids: Set[int] = set()
    seen_pairs: Set[Tuple[Provider, MediaKind]] = set()

    for i, s in enumerate(ranked):
        if len(picked) >= diverse_slots:
            break
        pair = (s.provider, s.kind)
        if pair in seen_pairs:
            continue
        seen_pairs.add(pair)
        picked.append(s)
        picked_ids.add(i)

    for i, s in enumerate(ranked):
        if len(picked) >= target_count:
            break
        if i in picked_ids:
            continue
        picked.append(s)
        picked_ids.add(i)

    return picked
