"""Fixed-window request limiter keyed by client address."""

import logging
import re
import threading
import time
from dataclasses import dataclass

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

_WINDOW_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_window(window: str) -> int:
    """Turn "15m" / "1h" / "30s" / "1d" into seconds."""
    match = _WINDOW_RE.match(window or "")
    if not match:
        raise ValueError(f"Invalid rate limit window: {window!r}")
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]


def client_id(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "anonymous"


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float

    def headers(self) -> dict:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset)),
        }


class RateLimiter:
    """Counts requests per key inside a fixed window.

    Args:
        max_requests: Requests allowed per window.
        window: Window length such as "1m" or "15m".
        prefix: Namespace for the keys of this limiter.
    """

    def __init__(self, max_requests: int, window: str, prefix: str, clock=time.time):
        self.max_requests = max_requests
        self.window_seconds = parse_window(window)
        self.prefix = prefix
        self._clock = clock
        self._store: dict = {}
        self._lock = threading.Lock()

    def check(self, identifier: str) -> RateLimitResult:
        key = f"{self.prefix}:{identifier}"
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None or now > entry["reset_time"]:
                entry = {"count": 1, "reset_time": now + self.window_seconds}
                self._store[key] = entry
                return RateLimitResult(True, self.max_requests, self.max_requests - 1, entry["reset_time"])

            entry["count"] += 1
            if entry["count"] > self.max_requests:
                return RateLimitResult(False, self.max_requests, 0, entry["reset_time"])
            return RateLimitResult(
                True, self.max_requests, self.max_requests - entry["count"], entry["reset_time"]
            )

    def peek(self, identifier: str) -> RateLimitResult:
        """Report the bucket state without counting a request."""
        key = f"{self.prefix}:{identifier}"
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None or now > entry["reset_time"]:
                return RateLimitResult(True, self.max_requests, self.max_requests, now + self.window_seconds)
            remaining = max(0, self.max_requests - entry["count"])
            return RateLimitResult(remaining > 0, self.max_requests, remaining, entry["reset_time"])

    def reset(self) -> None:
        with self._lock:
            self._store.clear()


limiters = {
    "auth": RateLimiter(5, "15m", "auth"),
    "comment": RateLimiter(10, "1m", "comment"),
    "newsletter": RateLimiter(3, "1h", "newsletter"),
    "post": RateLimiter(20, "1m", "post"),
    "api": RateLimiter(30, "1m", "api"),
}


def reset_all() -> None:
    for limiter in limiters.values():
        limiter.reset()


def limit(preset: str):
    """FastAPI dependency that rejects the request with 429 once the preset is exhausted."""
    limiter = limiters[preset]

    async def dependency(request: Request) -> RateLimitResult:
        identifier = client_id(request)
        result = limiter.check(identifier)
        if not result.success:
            retry_after = max(0, int(result.reset - time.time()))
            logger.warning("Rate limit hit for %s on %s", identifier, preset)
            raise HTTPException(
                status_code=429,
                detail={
                    "error": "Too many requests",
                    "message": "Please try again later.",
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "reset": int(result.reset),
                },
                headers={**result.headers(), "Retry-After": str(retry_after)},
            )
        return result

    return dependency
