"""Fixed-window request counter keyed by client.

Best effort only: counters live in this process, are lost on restart and are
not shared between instances. Behind a load balancer the effective limit is
per instance.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class RateLimitDecision:
    ok: bool
    remaining: int
    reset_at: float


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    def __init__(
        self,
        limit: int = 10,
        window_secs: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1:
            raise ValueError(f"limit must be >= 1 (got {limit})")
        self.limit = int(limit)
        self.window_secs = float(window_secs)
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._next_prune = clock() + self.window_secs

    def hit(self, key: str) -> RateLimitDecision:
        """Count one request for key and decide whether it is allowed."""
        now = self._clock()
        with self._lock:
            if now >= self._next_prune:
                # Sweep expired windows at most once per window.
                self._drop_expired(now)
                self._next_prune = now + self.window_secs
            window = self._windows.get(key)
            if window is None:
                window = _Window(count=0, reset_at=now + self.window_secs)
                self._windows[key] = window
            if now > window.reset_at:
                window.count = 0
                window.reset_at = now + self.window_secs
            window.count += 1
            return RateLimitDecision(
                ok=window.count <= self.limit,
                remaining=max(0, self.limit - window.count),
                reset_at=window.reset_at,
            )

    def retry_after(self, decision: RateLimitDecision) -> int:
        """Whole seconds until the decision's window resets (at least 1)."""
        return max(1, math.ceil(decision.reset_at - self._clock()))

    def prune(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            return self._drop_expired(now)

    def _drop_expired(self, now: float) -> int:
        expired = [k for k, w in self._windows.items() if now > w.reset_at]
        for k in expired:
            del self._windows[k]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def client_key(forwarded_for: str | None, peer: str | None) -> str:
    """First X-Forwarded-For entry, else the socket peer, else 'unknown'."""
    first = (forwarded_for or "").split(",")[0].strip()
    return first or (peer or "").strip() or "unknown"
