"""
Retry policy: max attempts + capped exponential backoff.
Used by the curator for whole-scene attempts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_sec: float = 1.0
    backoff_factor: float = 2.0
    max_delay_sec: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def delays(self) -> List[float]:
        """Delay before attempt 2, 3, ... (len == max_attempts - 1)."""
        out = []
        for i in range(max(0, int(self.max_attempts) - 1)):
            out.append(min(float(self.max_delay_sec), float(self.base_delay_sec) * (float(self.backoff_factor) ** i)))
        return out

    def delay_for(self, attempt_index: int) -> float:
        """Delay before attempt `attempt_index` (0-based). First attempt never waits."""
        if attempt_index <= 0:
            return 0.0
        d = self.delays()
        if not d:
            return 0.0
        return d[min(attempt_index - 1, len(d) - 1)]

    def run(
        self,
        fn: Callable[[int], T],
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    ) -> T:
        """
        Call fn(attempt_index) until it returns or attempts run out.
        Only exceptions in `retry_on` are retried; the last one is re-raised.
        """
        attempts = max(1, int(self.max_attempts))
        for attempt in range(attempts):
            try:
                return fn(attempt)
            except retry_on as e:
                if attempt >= attempts - 1:
                    raise
                delay = self.delay_for(attempt + 1)
                if on_retry is not None:
                    on_retry(attempt + 1, e, delay)
                if delay > 0:
                    self.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover
