from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque


class SlidingWindowRateLimiter:
    """
    Thread-safe limiter allowing at most `max_calls` permits in any rolling
    `per_seconds` window.

    Used by the RPC client to keep request bursts (e.g. a long backlog of
    purchase events, each needing several reads) under the fullnode's
    public rate limits. Process-local only.
    """

    def __init__(
        self,
        max_calls: int,
        per_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls <= 0:
            raise ValueError("max_calls must be > 0")
        if per_seconds <= 0:
            raise ValueError("per_seconds must be > 0")
        self.max_calls = max_calls
        self.per_seconds = float(per_seconds)
        self._stamps: Deque[float] = deque()
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    def _wait_time(self, now: float) -> float:
        # Forget permits that have left the window
        horizon = now - self.per_seconds
        while self._stamps and self._stamps[0] <= horizon:
            self._stamps.popleft()
        if len(self._stamps) < self.max_calls:
            return 0.0
        return max(0.0, self._stamps[0] + self.per_seconds - now)

    def acquire(self) -> None:
        """Take a permit, sleeping until the oldest one leaves the window if needed."""
        while True:
            with self._lock:
                now = self._clock()
                delay = self._wait_time(now)
                if delay == 0.0:
                    self._stamps.append(now)
                    return
            self._sleep(min(delay, 1.0))


__all__ = ["SlidingWindowRateLimiter"]
