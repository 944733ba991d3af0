from __future__ import annotations

import math
import threading
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

from .errors import RateLimitedError


class RateLimitStore(Protocol):
    """
    Shared counter storage. Multi-instance deployments plug in a shared store
    (Redis, database) so limits hold across processes.
    """

    def hit(self, key: str, window_s: float, now: float) -> Tuple[int, float]:
        """Counts one attempt; returns (count in current window, window reset time)."""
        ...

    def peek(self, key: str, now: float) -> Tuple[int, float]:
        ...

    def reset(self, key: str) -> None:
        ...


class InMemoryRateLimitStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[int, float]] = {}

    def hit(self, key: str, window_s: float, now: float) -> Tuple[int, float]:
        with self._lock:
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                count, reset_at = 0, now + window_s
            count += 1
            self._windows[key] = (count, reset_at)
            self._cleanup(now)
            return count, reset_at

    def peek(self, key: str, now: float) -> Tuple[int, float]:
        with self._lock:
            count, reset_at = self._windows.get(key, (0, 0.0))
            if now >= reset_at:
                return 0, 0.0
            return count, reset_at

    def reset(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def _cleanup(self, now: float) -> None:
        expired = [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]
        for k in expired:
            del self._windows[k]


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        max_attempts: int = 5,
        window_s: float = 15 * 60,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.window_s = window_s
        self.clock = clock or time.time

    def check(self, key: str) -> int:
        """Records an attempt; raises RateLimitedError past the limit. Returns attempts left."""
        now = self.clock()
        count, reset_at = self.store.hit(key, self.window_s, now)
        if count > self.max_attempts:
            retry_after = max(0, math.ceil(reset_at - now))
            raise RateLimitedError(
                f"Too many attempts. Please try again in {retry_after} seconds.",
                details={"retryAfter": retry_after, "remaining": 0},
            )
        return self.max_attempts - count

    def remaining(self, key: str) -> int:
        count, _ = self.store.peek(key, self.clock())
        return max(0, self.max_attempts - count)
