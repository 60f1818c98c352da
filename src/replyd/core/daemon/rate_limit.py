from __future__ import annotations

import time
from collections import deque

from replyd.core.daemon.constants import DEFAULT_MAX_PER_MINUTE, RATE_WINDOW_SEC


class SlidingWindowRateLimiter:
    """Admit at most ``capacity`` events within any trailing ``window_sec`` span.

    State is in memory only and starts empty on every daemon start.
    """

    def __init__(self, capacity: int = DEFAULT_MAX_PER_MINUTE, window_sec: float = RATE_WINDOW_SEC) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self.window_sec = float(window_sec)
        self._admitted: deque[float] = deque(maxlen=self.capacity)

    def _prune(self, now: float) -> None:
        while self._admitted and (now - self._admitted[0]) >= self.window_sec:
            self._admitted.popleft()

    def admit(self, now: float | None = None) -> bool:
        current = time.monotonic() if now is None else float(now)
        self._prune(current)
        if len(self._admitted) < self.capacity:
            self._admitted.append(current)
            return True
        return False

    def refund(self) -> None:
        """Give back the most recent admission, e.g. when its event could not be processed."""
        if self._admitted:
            self._admitted.pop()

    def pending(self, now: float | None = None) -> int:
        current = time.monotonic() if now is None else float(now)
        self._prune(current)
        return len(self._admitted)


__all__ = ["SlidingWindowRateLimiter"]
