"""
Rate Limit Governor - per-provider request budget + minimum spacing.

Every provider call goes through reserve(provider):
- waits (cooperatively) until the minimum inter-request spacing is satisfied
- fails with RateLimitExceeded(provider, retry_after) when the window budget is spent

Response headers (X-RateLimit-*, Retry-After) resynchronize the window via
sync_from_headers(); numbers for the same quota replace local counts, others only tighten them.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional

from media_models import Provider, ProviderRateWindow, RateBudget, RateLimitExceeded


DEFAULT_BUDGETS: Dict[Provider, RateBudget] = {
    Provider.PEXELS: RateBudget(limit=200, window_sec=3600.0, min_interval_sec=1.0),
    Provider.PIXABAY: RateBudget(limit=100, window_sec=60.0, min_interval_sec=0.5),
    Provider.GOOGLE_PLACES: RateBudget(limit=600, window_sec=60.0, min_interval_sec=0.2),
}

# Epoch-style reset values are far larger than any window length
_EPOCH_THRESHOLD = 1_000_000_000


def _header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    if not headers:
        return None
    lname = name.lower()
    for k, v in headers.items():
        if str(k).lower() == lname:
            return str(v).strip()
    return None


def _as_float(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class RateLimitGovernor:
    def __init__(
        self,
        budgets: Optional[Dict[Provider, RateBudget]] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        verbose: bool = False,
    ):
        self.budgets: Dict[Provider, RateBudget] = dict(DEFAULT_BUDGETS if budgets is None else budgets)
        self.clock = clock
        self.sleep = sleep
        self.verbose = verbose
        self._windows: Dict[Provider, ProviderRateWindow] = {}
        self._locks: Dict[Provider, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        # Telemetry
        self.granted: Dict[Provider, int] = {}
        self.denied: Dict[Provider, int] = {}

    def _state(self, provider: Provider):
        with self._registry_lock:
            if provider not in self._windows:
                self._windows[provider] = ProviderRateWindow(provider=provider, window_start_time=self.clock())
                self._locks[provider] = threading.Lock()
            return self._windows[provider], self._locks[provider]

    def reserve(self, provider: Provider) -> None:
        """
        Blocks until a request to `provider` may proceed, then counts it.
        Raises RateLimitExceeded instead of waiting out an exhausted window.
        """
        budget = self.budgets.get(provider)
        if budget is None:
            return
        window, lock = self._state(provider)
        with lock:
            now = self.clock()
            window.expire(now, budget.window_sec)
            if window.requests_in_window >= budget.limit:
                self._deny(provider, budget, window, now)

            if window.last_request_time > 0 and budget.min_interval_sec > 0:
                wait = budget.min_interval_sec - (now - window.last_request_time)
                if wait > 0:
                    self.sleep(wait)
                    now = self.clock()
                    window.expire(now, budget.window_sec)
                    if window.requests_in_window >= budget.limit:
                        self._deny(provider, budget, window, now)

            window.request_times.append(now)
            window.expire(now, budget.window_sec)
            window.last_request_time = now
            self.granted[provider] = self.granted.get(provider, 0) + 1

    def _deny(self, provider: Provider, budget: RateBudget, window: ProviderRateWindow, now: float) -> None:
        retry_after = max(0.0, window.window_start_time + budget.window_sec - now)
        self.denied[provider] = self.denied.get(provider, 0) + 1
        if self.verbose:
            print(f"⏳ RateLimitGovernor: {provider.value} budget spent ({budget.limit}/{budget.window_sec:.0f}s), retry in {retry_after:.1f}s")
        raise RateLimitExceeded(provider, retry_after)

    def sync_from_headers(self, provider: Provider, headers: Mapping[str, Any]) -> None:
        """
        Resynchronize local counters with what the provider reports.
        Understands X-RateLimit-Limit / -Remaining / -Reset (Pexels: epoch seconds,
        Pixabay: seconds left) and Retry-After.

        The provider's numbers replace the local log only when its X-RateLimit-Limit
        equals the local budget. Otherwise they describe another quota (Pexels reports
        a monthly one) and may only tighten the local window.
        """
        budget = self.budgets.get(provider)
        if budget is None or not headers:
            return

        retry_after = _as_float(_header(headers, "Retry-After"))
        if retry_after is not None:
            self.penalize(provider, retry_after)
            return

        remaining = _as_float(_header(headers, "X-RateLimit-Remaining"))
        reset = _as_float(_header(headers, "X-RateLimit-Reset"))
        if remaining is None and reset is None:
            return
        provider_limit = _as_float(_header(headers, "X-RateLimit-Limit"))
        same_quota = provider_limit is not None and int(provider_limit) == budget.limit

        window, lock = self._state(provider)
        with lock:
            now = self.clock()
            window.expire(now, budget.window_sec)
            times = window.request_times
            expires_from = now
            if reset is not None:
                reset_in = reset - now if reset > _EPOCH_THRESHOLD else reset
                reset_in = max(0.0, min(budget.window_sec, reset_in))
                # Counted requests expire together at the provider's reset time
                expires_from = now + reset_in - budget.window_sec

            local_used = len(times)
            used = local_used
            if remaining is not None:
                reported_used = max(0, min(budget.limit, budget.limit - int(remaining)))
                used = reported_used if same_quota else max(local_used, reported_used)

            if same_quota:
                while len(times) > used:
                    times.popleft()
                while len(times) < used:
                    times.append(now)
                if reset is not None:
                    for i in range(len(times)):
                        times[i] = expires_from
            elif used > local_used:
                merged = sorted(list(times) + [expires_from] * (used - local_used))
                times.clear()
                times.extend(merged)
            window.expire(now, budget.window_sec)

    def penalize(self, provider: Provider, retry_after: float) -> None:
        """Mark the window as spent for `retry_after` seconds (HTTP 429 / OVER_QUERY_LIMIT)."""
        budget = self.budgets.get(provider)
        if budget is None:
            return
        window, lock = self._state(provider)
        with lock:
            now = self.clock()
            retry_after = max(0.0, min(budget.window_sec, float(retry_after or 0.0)))
            window.request_times.clear()
            if retry_after > 0:
                window.request_times.extend([now + retry_after - budget.window_sec] * budget.limit)
            window.expire(now, budget.window_sec)
        if self.verbose:
            print(f"⚠️  RateLimitGovernor: {provider.value} penalized for {retry_after:.1f}s")

    def remaining(self, provider: Provider) -> Optional[int]:
        budget = self.budgets.get(provider)
        if budget is None:
            return None
        window, lock = self._state(provider)
        with lock:
            window.expire(self.clock(), budget.window_sec)
            return budget.limit - window.requests_in_window

    def status(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for provider, budget in self.budgets.items():
            window, lock = self._state(provider)
            with lock:
                now = self.clock()
                window.expire(now, budget.window_sec)
                reset_in = window.window_start_time + budget.window_sec - now if window.request_times else 0.0
                out[provider.value] = {
                    "limit": budget.limit,
                    "window_sec": budget.window_sec,
                    "requests_in_window": window.requests_in_window,
                    "remaining": budget.limit - window.requests_in_window,
                    "reset_in_sec": round(max(0.0, reset_in), 3),
                    "granted": self.granted.get(provider, 0),
                    "denied": self.denied.get(provider, 0),
                }
        return out
