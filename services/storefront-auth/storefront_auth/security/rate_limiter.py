"""In-memory sliding window limiter for credential endpoints."""

from __future__ import annotations

import math
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, DefaultDict


def attempt_key(scope: str, email: str) -> str:
    """Build the limiter key for one audience/operation and one email address."""
    return f"{scope}:{email.strip().lower()}"


class SlidingWindowAttemptLimiter:
    """Thread-safe limiter counting attempts per key inside a moving window."""

    def __init__(
        self,
        max_attempts: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_attempts = max_attempts
        self._window = window_seconds
        self._clock = clock
        self._attempts: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Record an attempt and return ``False`` once ``key`` is over its budget."""
        now = self._clock()
        with self._lock:
            attempts = self._prune(key, now)
            if len(attempts) >= self._max_attempts:
                return False
            attempts.append(now)
            return True

    def retry_after(self, key: str) -> int:
        """Seconds until ``key`` regains an attempt; ``0`` when it already has one."""
        now = self._clock()
        with self._lock:
            attempts = self._prune(key, now)
            if len(attempts) < self._max_attempts:
                return 0
            return max(1, math.ceil(self._window - (now - attempts[0])))

    def _prune(self, key: str, now: float) -> Deque[float]:
        attempts = self._attempts[key]
        while attempts and now - attempts[0] > self._window:
            attempts.popleft()
        return attempts
