"""
Fixed-window request rate limiting.

Each client IP gets ``max_requests`` per ``window_seconds``. Every limited
response carries ``X-RateLimit-Limit``, ``X-RateLimit-Remaining`` and
``X-RateLimit-Reset`` (seconds until the window resets); requests over the
limit get a 429 with ``Retry-After``.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CLIENT_IP_HEADERS = ("cf-connecting-ip", "x-real-ip", "x-forwarded-for")


@dataclass
class _Window:
    count: int
    reset_at: float


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset_seconds)
        return headers


class RateLimiter:
    """Counts requests per key in fixed windows."""

    def __init__(
        self,
        window_seconds: int = 60,
        max_requests: int = 100,
        cleanup_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._last_cleanup = clock()

    @classmethod
    def from_settings(cls, settings) -> "RateLimiter":
        return cls(window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS, max_requests=settings.RATE_LIMIT_MAX_REQUESTS)

    def hit(self, key: str) -> RateLimitResult:
        """Record one request for ``key`` and report whether it is allowed."""
        now = self._clock()
        if now - self._last_cleanup >= self.cleanup_interval:
            self.cleanup(now)

        window = self._windows.get(key)
        if window is None or window.reset_at < now:
            window = self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
        else:
            window.count += 1

        return RateLimitResult(
            allowed=window.count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - window.count),
            reset_seconds=math.ceil(window.reset_at - now),
        )

    def cleanup(self, now: Optional[float] = None) -> int:
        """Drop expired windows. Returns the number removed."""
        now = self._clock() if now is None else now
        expired = [key for key, window in self._windows.items() if window.reset_at < now]
        for key in expired:
            del self._windows[key]
        self._last_cleanup = now
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


def search_rate_limiter() -> RateLimiter:
    """60 searches per minute."""
    return RateLimiter(window_seconds=60, max_requests=60)


def get_client_ip(request: Request) -> str:
    for header in CLIENT_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies ``limiter`` to every request under ``path_prefix``.

    ``route_limiters`` maps longer path prefixes to their own limiters, which
    replace the default one for matching requests.
    """

    def __init__(
        self,
        app,
        limiter: RateLimiter,
        path_prefix: str = "/api",
        route_limiters: Optional[Mapping[str, RateLimiter]] = None,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix
        self.route_limiters = dict(route_limiters or {})

    def _limiter_for(self, path: str) -> RateLimiter:
        matches = [prefix for prefix in self.route_limiters if path.startswith(prefix)]
        if matches:
            return self.route_limiters[max(matches, key=len)]
        return self.limiter

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith(self.path_prefix) or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = get_client_ip(request)
        result = self._limiter_for(path).hit(client_ip)

        if not result.allowed:
            logger.warning(f"Rate limit exceeded for {client_ip} on {path}")
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests", "retryAfter": result.reset_seconds},
                headers=result.headers(),
            )

        response = await call_next(request)
        response.headers.update(result.headers())
        return response
