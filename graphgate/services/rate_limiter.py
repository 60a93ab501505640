"""
In-memory sliding-window limiter for per-tenant tool budgets.
"""

from __future__ import annotations

import math
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Callable, Optional

import graphgate.config as config
from graphgate.context import RateLimits

WINDOWS = (
    ("minute", 60.0, "per_minute"),
    ("hour", 3600.0, "per_hour"),
    ("day", 86400.0, "per_day"),
)
_LONGEST_WINDOW = WINDOWS[-1][1]


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    window: Optional[str] = None
    retry_after_seconds: Optional[int] = None


class SlidingWindowRateLimiter:
    """
    Tracks request timestamps per (tenant, tool) key.

    A hit is recorded only when every window still has budget. The key table
    is bounded by ``max_entries``; the least recently used key is evicted.
    """

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.time):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: OrderedDict[tuple[str, str], deque] = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)

    def _prune(self, timestamps: deque, now: float) -> None:
        while timestamps and now - timestamps[0] >= _LONGEST_WINDOW:
            timestamps.popleft()

    def hit(self, tenant_id: str, tool_name: str, limits: RateLimits) -> RateLimitDecision:
        now = self._clock()
        key = (tenant_id, tool_name)
        with self._lock:
            timestamps = self._hits.get(key)
            if timestamps is None:
                timestamps = deque()
                self._hits[key] = timestamps
                while len(self._hits) > self.max_entries:
                    self._hits.popitem(last=False)
            else:
                self._hits.move_to_end(key)
            self._prune(timestamps, now)

            for window_name, span, attr in WINDOWS:
                budget = getattr(limits, attr)
                in_window = [ts for ts in timestamps if now - ts < span]
                if len(in_window) >= budget:
                    if not in_window:
                        retry_after = int(span)
                    else:
                        # Oldest hit that must age out before a slot frees up.
                        blocking = in_window[len(in_window) - budget] if budget else in_window[-1]
                        retry_after = max(1, math.ceil(blocking + span - now))
                    return RateLimitDecision(False, window_name, retry_after)

            timestamps.append(now)
        return RateLimitDecision(True)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


_default_limiter: Optional[SlidingWindowRateLimiter] = None
_default_lock = threading.Lock()


def get_rate_limiter() -> SlidingWindowRateLimiter:
    """Process-wide limiter used by the MCP surface."""
    global _default_limiter
    with _default_lock:
        if _default_limiter is None:
            _default_limiter = SlidingWindowRateLimiter(max_entries=config.RATE_LIMIT_MAX_ENTRIES)
        return _default_limiter


__all__ = ["RateLimitDecision", "SlidingWindowRateLimiter", "WINDOWS", "get_rate_limiter"]
