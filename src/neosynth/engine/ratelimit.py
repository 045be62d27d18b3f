"""Sliding-window rate limiting for API keys and throttled endpoints.

Each limited key keeps the exact timestamps of its recent requests, one list
per window, pruned on every check. Exact timestamps let a rejection report
how many seconds remain until the oldest request leaves the window.

The shipped backend is process-local. ``RateLimiter`` is the seam for a
shared backend; the gate and routes only depend on the protocol.
"""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

MINUTE = 60.0
HOUR = 60.0 * 60.0


@dataclass(frozen=True)
class WindowLimit:
    """At most ``max_requests`` within any trailing ``window_seconds``."""

    max_requests: int
    window_seconds: float


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check."""

    allowed: bool
    reset_time: int | None = None


def per_minute_and_hour(per_minute: int, per_hour: int) -> tuple[WindowLimit, WindowLimit]:
    """The dual minute/hour window pair applied to every API key."""
    return WindowLimit(per_minute, MINUTE), WindowLimit(per_hour, HOUR)


class RateLimiter(Protocol):
    """Protocol for rate limiter backends."""

    def check(self, key: str, limits: Sequence[WindowLimit]) -> RateLimitResult: ...
    def reset(self, key: str) -> None: ...
    def sweep(self) -> int: ...
    def clear(self) -> None: ...


class SlidingWindowRateLimiter:
    """In-memory sliding-window limiter with a lock per limited key.

    A request is admitted only if every window is under its ceiling; admitted
    requests are recorded in all windows, rejected ones in none.

    Usage::

        limiter = SlidingWindowRateLimiter()
        result = limiter.check(key_id, per_minute_and_hour(100, 1000))
        if not result.allowed:
            ...  # result.reset_time seconds until a slot frees up
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, dict[float, deque[float]]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _is_current(self, key: str, lock: threading.Lock) -> bool:
        # False once a sweep or reset retired this lock along with the key.
        with self._registry_lock:
            return self._locks.get(key) is lock

    def _retire(self, key: str) -> None:
        # Caller holds the key's lock.
        with self._registry_lock:
            self._windows.pop(key, None)
            self._locks.pop(key, None)

    def check(self, key: str, limits: Sequence[WindowLimit]) -> RateLimitResult:
        """Admit or reject one request for *key*."""
        while True:
            lock = self._lock_for(key)
            with lock:
                if self._is_current(key, lock):
                    return self._check_locked(key, limits)

    def _check_locked(self, key: str, limits: Sequence[WindowLimit]) -> RateLimitResult:
        now = self._clock()
        windows = self._windows.setdefault(key, {})
        for limit in limits:
            stamps = windows.setdefault(limit.window_seconds, deque())
            _prune(stamps, now, limit.window_seconds)

        for limit in limits:
            stamps = windows[limit.window_seconds]
            if len(stamps) >= limit.max_requests:
                if stamps:
                    remaining = limit.window_seconds - (now - stamps[0])
                else:
                    remaining = limit.window_seconds
                return RateLimitResult(allowed=False, reset_time=max(1, math.ceil(remaining)))

        for limit in limits:
            windows[limit.window_seconds].append(now)
        return RateLimitResult(allowed=True)

    def reset(self, key: str) -> None:
        """Forget all recorded requests for *key*."""
        lock = self._lock_for(key)
        with lock:
            self._retire(key)

    def sweep(self) -> int:
        """Drop keys whose windows have fully drained, along with their locks.

        Keys currently held by a request are skipped rather than waited on.
        """
        removed = 0
        with self._registry_lock:
            candidates = list(self._locks.items())
        for key, lock in candidates:
            if not lock.acquire(blocking=False):
                continue
            try:
                if not self._is_current(key, lock):
                    continue
                windows = self._windows.get(key, {})
                now = self._clock()
                for window_seconds, stamps in windows.items():
                    _prune(stamps, now, window_seconds)
                if all(not stamps for stamps in windows.values()):
                    if key in self._windows:
                        removed += 1
                    self._retire(key)
            finally:
                lock.release()
        return removed

    def clear(self) -> None:
        """Forget everything (tests and shutdown)."""
        with self._registry_lock:
            self._windows.clear()
            self._locks.clear()

    def __len__(self) -> int:
        return len(self._windows)


def _prune(stamps: deque[float], now: float, window_seconds: float) -> None:
    while stamps and now - stamps[0] >= window_seconds:
        stamps.popleft()
