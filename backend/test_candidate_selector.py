#!/usr/bin/env python3
"""
CandidateSelector tests: scoring formula, URL pre-filter, deterministic ranking, diversity.

Run:
  python3 -m pytest backend/test_candidate_selector.py
"""

import pytest

from candidate_selector import CandidateSelector, diversity_pick, score_candidate
from media_models import (
    MediaCandidate,
    MediaKind,
    ProjectDedupState,
    Provider,
    SceneContext,
    SceneMediaRequest,
    ScenePacing,
)


ORDER = [Provider.PEXELS, Provider.PIXABAY, Provider.GOOGLE_PLACES]


def _cand(cid, provider=Provider.PEXELS, kind=MediaKind.IMAGE, w=1920, h=1080, tags=("eiffel", "tower"), **kw):
    return MediaCandidate(
        id=cid,
        provider=provider,
        kind=kind,
        download_url=f"https://cdn.example/{cid}.bin",
        page_url=f"https://example/{cid}",
        width=w,
        height=h,
        tags=tuple(tags),
        **kw,
    )


def _request(strategy="balanced-content", purpose="content", keywords=("Eiffel Tower",)):
    return SceneMediaRequest(
        scene_number=1,
        search_keywords=tuple(keywords),
        pacing=ScenePacing(visuals_needed=4, average_visual_duration_sec=4.0, pacing_strategy=strategy),
        scene_context=SceneContext(purpose=purpose, emotional_tone="calm", title="Paris", duration_sec=16.0),
    )


def test_score_formula_for_stock_image():
    s = score_candidate(_cand("a"), _request(), ORDER)
    assert s.relevance_score == pytest.approx(85.0)  # 50 + 30 overlap + 5 image for balanced pacing
    assert s.quality_score == pytest.approx(90.0)  # 50 + 25 width + 15 aspect
    assert s.source_score == pytest.approx(90.0)
    assert s.total_score == pytest.approx(85 * 0.5 + 90 * 0.3 + 90 * 0.2)


def test_keyword_overlap_matches_whole_words_only():
    req = _request(keywords=("street art",))
    inside_words = score_candidate(_cand("p", tags=("party", "streets")), req, ORDER)
    exact = score_candidate(_cand("e", tags=("street", "mural art")), req, ORDER)
    half = score_candidate(_cand("h", description="Street, at dusk", tags=()), req, ORDER)
    assert inside_words.relevance_score == pytest.approx(55.0)
    assert exact.relevance_score == pytest.approx(85.0)
    assert half.relevance_score == pytest.approx(70.0)


def test_video_preferred_for_fast_pacing():
    req = _request(strategy="fast-engagement")
    video = score_candidate(_cand("v", kind=MediaKind.VIDEO, duration_sec=12.0), req, ORDER)
    image = score_candidate(_cand("i"), req, ORDER)
    assert video.relevance_score == pytest.approx(90.0)
    assert image.relevance_score == pytest.approx(80.0)
    assert video.quality_score == pytest.approx(100.0)


def test_place_bonus_and_top_source_tier():
    place = _cand(
        "places-p1-0",
        provider=Provider.GOOGLE_PLACES,
        tags=("eiffel", "tower", "tourist attraction"),
        bonus_fields={"rating": 4.2, "place_types": ["point_of_interest"]},
    )
    travel = score_candidate(place, _request(purpose="travel destination"), ORDER)
    other = score_candidate(place, _request(), ORDER)
    assert travel.relevance_score == pytest.approx(50 + 30 + 5 + 10 + 3)
    assert other.relevance_score == pytest.approx(50 + 30 + 5 + 5 + 3)
    assert travel.source_score == 100.0


def test_relevance_is_clamped():
    place = _cand(
        "places-p1-0",
        provider=Provider.GOOGLE_PLACES,
        bonus_fields={"rating": 4.9, "place_types": ["tourist_attraction"]},
    )
    assert score_candidate(place, _request(purpose="travel"), ORDER).relevance_score == 100.0


def test_source_score_follows_rotated_order():
    rotated = [Provider.PIXABAY, Provider.GOOGLE_PLACES, Provider.PEXELS]
    assert score_candidate(_cand("a"), _request(), rotated).source_score == pytest.approx(60.0)
    assert score_candidate(_cand("b", provider=Provider.PIXABAY), _request(), rotated).source_score == pytest.approx(90.0)
    assert score_candidate(_cand("c"), _request(), [Provider.PIXABAY]).source_score == 50.0


def test_rank_prefilters_used_urls_and_repeated_ids():
    dedup = ProjectDedupState(used_urls={"https://example/b"})
    pool = [_cand("a"), _cand("b"), _cand("a"), _cand("c", provider=Provider.PIXABAY)]
    sel = CandidateSelector()

    ranked = sel.rank(pool, _request(), dedup, ORDER)

    assert [s.candidate.id for s in ranked] == ["a", "c"]
    assert sel.last_report == {"input": 4, "already_used": 1, "repeated_in_pool": 1, "scored": 2}


def test_rank_is_deterministic_with_id_tiebreak():
    pool = [_cand("zeta"), _cand("alpha"), _cand("mid", w=1280, h=720)]
    sel = CandidateSelector()
    first = [s.candidate.id for s in sel.rank(pool, _request(), ProjectDedupState(), ORDER)]
    second = [s.candidate.id for s in sel.rank(list(reversed(pool)), _request(), ProjectDedupState(), ORDER)]
    assert first == second == ["alpha", "zeta", "mid"]


def test_diversity_first_half_of_slots_unique_provider_kind():
    pool = [_cand(f"px{i}") for i in range(4)] + [_cand("pb-vid", provider=Provider.PIXABAY, kind=MediaKind.VIDEO, tags=())]
    ranked = CandidateSelector().rank(pool, _request(), ProjectDedupState(), ORDER)
    assert ranked[-1].candidate.id == "pb-vid"

    picked = diversity_pick(ranked, 4)

    assert len(picked) == 4
    first_half = picked[:2]
    assert len({(s.provider, s.kind) for s in first_half}) == 2
    assert "pb-vid" in [s.candidate.id for s in first_half]


def test_select_returns_fewer_when_pool_is_small():
    sel = CandidateSelector()
    picked = sel.select([_cand("a"), _cand("b")], 5, _request(), ProjectDedupState(), ORDER)
    assert [s.candidate.id for s in picked] == ["a", "b"]
    assert sel.select([_cand("a")], 0, _request(), ProjectDedupState(), ORDER) == []
