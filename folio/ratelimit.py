"""
Fixed-window request counter, keyed by client

State is per process and lost on restart. A client can spend its whole
allowance at the end of one window and again right after the reset, so up
to 2 * max_requests can land in a short interval.
"""

import math
import threading
import time
from typing import Callable, Dict, NamedTuple


class RateLimitStatus(NamedTuple):
    allowed: bool
    remaining: int
    reset_at: float
    hits: int
    limit: int


class _Entry:
    __slots__ = ('count', 'reset_at')

    def __init__(self, reset_at: float):
        self.count = 0
        self.reset_at = reset_at


class RateLimiter:
    PRUNE_EVERY = 500

    def __init__(self, max_requests: int = 50, window_seconds: float = 15 * 60,
                 clock: Callable[[], float] = time.time):
        if max_requests < 1:
            raise ValueError('max_requests must be at least 1')
        if window_seconds <= 0:
            raise ValueError('window_seconds must be positive')
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._checks = 0

    def check(self, client_key: str) -> RateLimitStatus:
        """Count one request for client_key and report whether it is allowed"""
        with self._lock:
            now = self.clock()
            self._checks += 1
            if self._checks % self.PRUNE_EVERY == 0:
                self._prune(now)

            entry = self._entries.get(client_key)
            if entry is None:
                entry = _Entry(now + self.window_seconds)
                self._entries[client_key] = entry
            elif now > entry.reset_at:
                entry.count = 0
                entry.reset_at = now + self.window_seconds

            entry.count += 1
            return RateLimitStatus(
                allowed=entry.count <= self.max_requests,
                remaining=max(0, self.max_requests - entry.count),
                reset_at=entry.reset_at,
                hits=entry.count,
                limit=self.max_requests
            )

    def retry_after(self, status: RateLimitStatus) -> int:
        """Whole seconds until the window of status resets"""
        return max(0, math.ceil(status.reset_at - self.clock()))

    def reset(self, client_key: str = None):
        with self._lock:
            if client_key is None:
                self._entries.clear()
            else:
                self._entries.pop(client_key, None)

    def __len__(self):
        return len(self._entries)

    def _prune(self, now):
        expired = [key for key, entry in self._entries.items() if now > entry.reset_at]
        for key in expired:
            del self._entries[key]
