"""
Central error responder. Compiled routes, FastAPI's own validation and
routing errors, and anything unhandled all end up in render_error, so every
failure leaves the service in the same envelope.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import Settings, get_settings
from core.exceptions import AppError, RequestValidationFailed
from models.schemas import ErrorResponse
from utils.logging import get_logger

logger = get_logger(__name__)

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "RATE_LIMIT_EXCEEDED",
}


def _settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def _request_context(request: Request) -> dict[str, str]:
    return {
        "path": request.url.path,
        "method": request.method,
        "request_id": getattr(request.state, "request_id", ""),
    }


async def render_error(request: Request, exc: Exception) -> JSONResponse:
    """Map any exception to the uniform error envelope. Never raises."""
    # Client errors always carry their details; 5xx details stay internal in production.
    expose_internals = not _settings(request).is_production

    if isinstance(exc, AppError):
        log = logger.warning if exc.status_code >= 500 else logger.info
        log(
            "request_failed",
            extra={**_request_context(request), "code": exc.code, "status": exc.status_code},
        )
        body = ErrorResponse(
            code=exc.code,
            message=exc.message,
            status_code=exc.status_code,
            details=exc.details if exc.status_code < 500 or expose_internals else None,
        )
        return body.to_response(headers=exc.headers or None)

    if isinstance(exc, RequestValidationError):
        return await render_error(
            request,
            RequestValidationFailed(
                details=[
                    {"path": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                    for err in exc.errors()
                ]
            ),
        )

    if isinstance(exc, StarletteHTTPException):
        body = ErrorResponse(
            code=_HTTP_CODES.get(exc.status_code, "HTTP_ERROR"),
            message=str(exc.detail),
            status_code=exc.status_code,
        )
        return body.to_response(headers=getattr(exc, "headers", None))

    logger.exception("unhandled_exception", extra=_request_context(request))
    body = ErrorResponse(
        code="INTERNAL_ERROR",
        message="Internal server error",
        status_code=500,
        details=repr(exc) if expose_internals else None,
    )
    return body.to_response()


def install_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, render_error)
    app.add_exception_handler(RequestValidationError, render_error)
    app.add_exception_handler(StarletteHTTPException, render_error)
    app.add_exception_handler(Exception, render_error)
