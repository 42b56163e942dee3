"""
Middleware: app-wide ASGI layers (request id, secure headers, timing) and the
signature shared by per-route middleware composed by core.routing.

Route middleware is any `async (request, call_next) -> Response` callable, the
same contract as BaseHTTPMiddleware.dispatch, so a chain reads the same way at
both levels.
"""

import time
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from utils.logging import get_logger

logger = get_logger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]
RouteMiddleware = Callable[[Request, CallNext], Awaitable[Response]]

REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_MS = 500


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagates the caller's X-Request-ID or assigns one; exposed on request.state."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Records request duration and logs slow requests.
    Async-compatible: uses monotonic time, no blocking.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"
        if duration_ms > SLOW_REQUEST_MS:
            logger.warning(
                "slow_request",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": round(duration_ms, 2),
                    "status": response.status_code,
                },
            )
        return response


class SecureHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers. Compatible with Nginx/Cloudflare (they may override).
    HSTS only in production, where TLS is guaranteed to terminate upstream.
    """

    def __init__(self, app, *, hsts: bool = False) -> None:
        super().__init__(app)
        self._hsts = hsts

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        if self._hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
