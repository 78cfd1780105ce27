"""
Fixed-window in-memory rate limiting.
"""
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

LOGGER = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    def __init__(self, body: Dict[str, Any]):
        super().__init__(body["message"])
        self.body = body
        self.retry_after = body["retryAfter"]


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    def __init__(self, max_requests: int, window_s: float, code: str, message: str, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_s = float(window_s)
        self.code = code
        self.message = message
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = threading.Lock()

    def _evict(self, now: float) -> None:
        for key in [k for k, w in self._windows.items() if now >= w.reset_at]:
            del self._windows[key]

    def hit(self, key: str) -> None:
        """Count one request for key; raises RateLimitExceeded once the window is full."""
        now = self._clock()
        with self._lock:
            self._evict(now)
            window = self._windows.get(key)
            if window is None:
                self._windows[key] = _Window(1, now + self.window_s)
                return
            if window.count >= self.max_requests:
                retry_after = max(1, math.ceil(window.reset_at - now))
                LOGGER.warning("Rate limit %s hit for %s", self.code, key)
                raise RateLimitExceeded(
                    {"success": False, "message": self.message, "code": self.code, "retryAfter": retry_after}
                )
            window.count += 1

    def release(self, key: str) -> None:
        """Give back one request, e.g. after it succeeded and successes are not counted."""
        with self._lock:
            window = self._windows.get(key)
            if window is not None and window.count > 0:
                window.count -= 1

    def remaining(self, key: str) -> Tuple[int, Optional[float]]:
        now = self._clock()
        with self._lock:
            self._evict(now)
            window = self._windows.get(key)
            if window is None:
                return self.max_requests, None
            return max(0, self.max_requests - window.count), window.reset_at - now

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def auth_limiter(clock=time.monotonic) -> RateLimiter:
    return RateLimiter(
        5, 15 * 60, "AUTH_RATE_LIMIT_EXCEEDED",
        "Too many authentication attempts from this IP, please try again later", clock,
    )


def places_limiter(clock=time.monotonic) -> RateLimiter:
    return RateLimiter(
        30, 60, "PLACES_RATE_LIMIT_EXCEEDED",
        "Too many location requests from this IP, please try again later", clock,
    )
