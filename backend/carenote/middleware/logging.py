"""
CareNote Backend — Request Logging Middleware
===============================================

What:  One access-log line per request: method, path, status, duration,
       request id, client IP and (once authenticated) the user id.
How:   `get_current_user` stores the caller's id in request.state.user_id;
       this middleware reads it after the handler returns.

What we log vs what we DON'T log (privacy):
    ✅ Log: method, path, status, duration, IP, request id, user id
    ❌ Don't log: request bodies (patient data, passwords), tokens, query strings
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from carenote.middleware.request_id import request_id_var

logger = logging.getLogger("carenote.access")

QUIET_PATHS = {"/health"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        client_ip = getattr(request.client, "host", "unknown") if request.client else "unknown"
        rid = request_id_var.get("")

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        user_id = getattr(request.state, "user_id", None) or "-"
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] user=%s from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            user_id,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "user_id": user_id,
            },
        )
        return response
