"""
Scene Scheduler - per-scene delay, query expansion and provider rotation.

Scenes run sequentially. Earlier scenes burn provider budget and the "obvious"
search terms first, so later scenes:
- wait a little longer before starting (progressive delay)
- get a diversifying term appended to their query (query expansion)
- start with a different provider (rotation by (scene_index - 1) mod n)

Every process() call leaves a SceneProcessingRecord, success or not.
"""

from __future__ import annotations

import random
import re
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from media_models import (
    DEFAULT_PROVIDER_PRIORITY,
    Provider,
    SceneContext,
    SceneMediaRequest,
    SceneProcessingRecord,
)

T = TypeVar("T")

DEFAULT_SCENE_DELAYS_SEC: Tuple[float, ...] = (0.0, 2.0, 4.0)
DEFAULT_EXPANSION_THRESHOLD = 3
DEFAULT_EARLY_EXPANSION_PROBABILITY = 0.3

# Scene role -> diversifying terms
ROLE_VOCABULARY: Dict[str, Tuple[str, ...]] = {
    "hook": ("dramatic", "closeup", "striking"),
    "intro": ("overview", "establishing shot", "panorama"),
    "tips": ("mistakes", "pitfalls", "checklist"),
    "warnings": ("mistakes", "pitfalls", "danger"),
    "conclusion": ("summary", "takeaways", "sunset"),
    "travel": ("landmark", "aerial view", "street"),
    "content": ("detail", "people", "aerial view"),
}
DEFAULT_ROLE = "content"

# Words in purpose/title that map onto a vocabulary role
_ROLE_HINTS: Tuple[Tuple[str, str], ...] = (
    ("hook", "hook"),
    ("intro", "intro"),
    ("opening", "intro"),
    ("tip", "tips"),
    ("advice", "tips"),
    ("warning", "warnings"),
    ("mistake", "warnings"),
    ("avoid", "warnings"),
    ("conclusion", "conclusion"),
    ("outro", "conclusion"),
    ("summary", "conclusion"),
    ("destination", "travel"),
    ("travel", "travel"),
    ("visit", "travel"),
)


def scene_role(ctx: SceneContext) -> str:
    """Vocabulary role for a scene, from its purpose first, then its title."""
    for text in (ctx.purpose, ctx.title):
        words = re.findall(r"[a-z]+", str(text or "").lower())
        for hint, role in _ROLE_HINTS:
            if any(w.startswith(hint) for w in words):
                return role
    return DEFAULT_ROLE


class SceneScheduler:
    def __init__(
        self,
        providers: Sequence[Provider] = DEFAULT_PROVIDER_PRIORITY,
        scene_delays_sec: Sequence[float] = DEFAULT_SCENE_DELAYS_SEC,
        expansion_threshold: int = DEFAULT_EXPANSION_THRESHOLD,
        early_expansion_probability: float = DEFAULT_EARLY_EXPANSION_PROBABILITY,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        verbose: bool = False,
    ):
        self.providers: Tuple[Provider, ...] = tuple(providers)
        self.scene_delays_sec: Tuple[float, ...] = tuple(float(d) for d in scene_delays_sec) or (0.0,)
        self.expansion_threshold = max(1, int(expansion_threshold))
        self.early_expansion_probability = max(0.0, min(1.0, float(early_expansion_probability)))
        self.rng = rng if rng is not None else random.Random()
        self.sleep = sleep
        self.clock = clock
        self.verbose = verbose
        self.records: List[SceneProcessingRecord] = []

    def delay_for(self, scene_index: int) -> float:
        """Scene 1 -> delays[0], scene 2 -> delays[1], ...; scenes past the list use the last value."""
        idx = max(1, int(scene_index)) - 1
        return self.scene_delays_sec[min(idx, len(self.scene_delays_sec) - 1)]

    def expand_query(self, scene_index: int, request: SceneMediaRequest, force: bool = False) -> str:
        """
        Base query plus one diversifying role term.
        Always expands at/after the threshold (or when forced), otherwise with
        early_expansion_probability.
        """
        base = request.primary_query()
        if not base:
            return base
        if not force and scene_index < self.expansion_threshold:
            if self.rng.random() >= self.early_expansion_probability:
                return base

        base_low = base.lower()
        vocab = [t for t in ROLE_VOCABULARY.get(scene_role(request.scene_context), ROLE_VOCABULARY[DEFAULT_ROLE]) if t not in base_low]
        if not vocab:
            return base
        term = vocab[self.rng.randrange(len(vocab))]
        return f"{base} {term}"

    def rotate_providers(self, scene_index: int, providers: Optional[Sequence[Provider]] = None) -> List[Provider]:
        order = list(self.providers if providers is None else providers)
        if not order:
            return []
        shift = (max(1, int(scene_index)) - 1) % len(order)
        return order[shift:] + order[:shift]

    def process(
        self,
        scene_index: int,
        request: SceneMediaRequest,
        process_fn: Callable[[str, List[Provider]], T],
        providers: Optional[Sequence[Provider]] = None,
        force_expansion: bool = False,
    ) -> T:
        """
        Apply delay + expansion + rotation, then call process_fn(query, provider_order).
        Records the outcome and re-raises any exception from process_fn.
        """
        delay = self.delay_for(scene_index)
        if delay > 0:
            if self.verbose:
                print(f"⏳ Scene {scene_index}: waiting {delay:.1f}s before searching")
            self.sleep(delay)

        query = self.expand_query(scene_index, request, force=force_expansion)
        order = self.rotate_providers(scene_index, providers)
        if self.verbose:
            print(f"🎬 Scene {scene_index}: query='{query}' providers={[p.value for p in order]}")

        started = self.clock()
        try:
            result = process_fn(query, order)
        except Exception as e:
            self._record(request, started, False, query, order, 0, f"{type(e).__name__}: {e}")
            raise
        self._record(request, started, True, query, order, _result_count(result), None)
        return result

    def _record(
        self,
        request: SceneMediaRequest,
        started: float,
        success: bool,
        query: str,
        order: Sequence[Provider],
        result_count: int,
        error: Optional[str],
    ) -> None:
        self.records.append(
            SceneProcessingRecord(
                scene_number=request.scene_number,
                success=success,
                duration_ms=int(max(0.0, self.clock() - started) * 1000),
                query_used=query,
                provider_order_used=tuple(order),
                result_count=result_count,
                error=error,
            )
        )


def _result_count(result) -> int:
    try:
        return len(result)
    except TypeError:
        return 1 if result is not None else 0
