"""
CareNote Backend — Rate Limiting Middleware
=============================================

What:  Per-IP sliding-window rate limiter with two buckets.
How:   Every request counts against the general bucket
       (rate_limit_requests per rate_limit_window). Credential endpoints
       (login, register, forgot/reset password, contact form) also count against a much
       smaller auth bucket (auth_rate_limit_requests per
       auth_rate_limit_window) to slow down credential stuffing.

In-memory only: each worker process keeps its own counters.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from carenote.config import settings
from carenote.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

AUTH_PATHS = {
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/api/contact",
}


class SlidingWindow:
    """Timestamps per key; `hit` returns seconds to wait, or None when allowed."""

    def __init__(self, limit: int, window: int):
        self.limit = limit
        self.window = window
        self._hits: Dict[str, List[float]] = defaultdict(list)

    def wait_time(self, key: str, now: float) -> Optional[int]:
        """Seconds until `key` may hit again, or None. Records nothing."""
        window_start = now - self.window
        recent = [ts for ts in self._hits[key] if ts > window_start]
        self._hits[key] = recent
        if len(recent) >= self.limit:
            return int(recent[0] + self.window - now) + 1
        return None

    def record(self, key: str, now: float) -> None:
        self._hits[key].append(now)

    def hit(self, key: str, now: float) -> Optional[int]:
        retry_after = self.wait_time(key, now)
        if retry_after is None:
            self.record(key, now)
        return retry_after

    def cleanup(self, now: float) -> int:
        window_start = now - self.window
        inactive = [key for key, hits in self._hits.items() if not hits or hits[-1] < window_start]
        for key in inactive:
            del self._hits[key]
        return len(inactive)


class RateLimitMiddleware(BaseHTTPMiddleware):

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}
    CLEANUP_EVERY = 1000

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self.general = SlidingWindow(settings.rate_limit_requests, settings.rate_limit_window)
        self.auth = SlidingWindow(settings.auth_rate_limit_requests, settings.auth_rate_limit_window)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if not settings.rate_limit_enabled or path in self.EXCLUDED_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = getattr(request.client, "host", "unknown") if request.client else "unknown"
        now = time.time()

        limited = self._check(client_ip, path, now)
        if limited is not None:
            bucket, retry_after = limited
            logger.warning("Rate limit (%s) exceeded for IP %s on %s", bucket, client_ip, path)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retry_after": retry_after},
                    "request_id": request_id_var.get("") or None,
                },
                headers={"Retry-After": str(retry_after)},
            )

        self._seen += 1
        if self._seen % self.CLEANUP_EVERY == 0:
            removed = self.general.cleanup(now) + self.auth.cleanup(now)
            if removed:
                logger.debug("Cleaned up %d inactive rate-limit entries", removed)

        return await call_next(request)

    def _check(self, client_ip: str, path: str, now: float) -> Optional[Tuple[str, int]]:
        # A rejected request counts against neither bucket
        buckets = [("general", self.general)]
        if path in AUTH_PATHS:
            buckets.insert(0, ("auth", self.auth))

        for name, window in buckets:
            retry_after = window.wait_time(client_ip, now)
            if retry_after is not None:
                return name, retry_after
        for _, window in buckets:
            window.record(client_ip, now)
        return None
