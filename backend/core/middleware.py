"""FastAPI middleware for request tracking, timing, and error handling.

Adds:
- X-Request-ID header (generated if not provided)
- X-Process-Time header (request duration)
- Structured logging per request
- Exception handlers mapping the gateway exceptions to JSON responses
"""

import logging
import time
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings
from core.constants import CLIENT_ID_HEADER
from core.exceptions import (
    ConflictError,
    ForbiddenError,
    IntegrationAuthError,
    NotFoundError,
    RateLimitExceededError,
    StoreUnavailableError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

HEALTH_PATHS = ("/api/health", "/api/v1/health")


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Tag every request with an ID, time it and log the outcome.

    The request ID and the presented client ID are bound to the structlog
    context so gate decisions logged further down carry them too.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_id=request.headers.get(CLIENT_ID_HEADER),
        )
        start_time = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                extra={"duration_ms": _elapsed_ms(start_time)},
                exc_info=True,
            )
            response = JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "detail": _internal_detail(exc),
                    "request_id": request_id,
                },
            )
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "client_id")

        duration_ms = _elapsed_ms(start_time)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"

        if not request.url.path.startswith(HEALTH_PATHS):
            logger.log(
                logging.WARNING if response.status_code >= 400 else logging.INFO,
                "%s %s -> %d (%.0fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "status_code": response.status_code,
                    "client_ip": request.client.host if request.client else None,
                },
            )
        return response


def _elapsed_ms(start_time: float) -> float:
    return round((time.monotonic() - start_time) * 1000, 2)


def _internal_detail(exc: Exception) -> str:
    # Production responses never echo exception text
    if get_settings().is_production:
        return "Internal server error"
    return str(exc) or "Internal server error"


def _error_body(request: Request, exc: IntegrationAuthError, error: str) -> dict:
    body = {
        "error": error,
        "detail": exc.message,
        "request_id": getattr(request.state, "request_id", None),
    }
    reason = getattr(exc, "reason", None)
    if reason:
        body["reason"] = reason
    return body


def setup_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content=_error_body(request, exc, "not_found"))

    @app.exception_handler(UnauthorizedError)
    async def unauthorized_handler(request: Request, exc: UnauthorizedError):
        return JSONResponse(status_code=401, content=_error_body(request, exc, "unauthorized"))

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError):
        return JSONResponse(status_code=403, content=_error_body(request, exc, "forbidden"))

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content=_error_body(request, exc, "validation_failed"))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return JSONResponse(status_code=409, content=_error_body(request, exc, "conflict"))

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
        return JSONResponse(
            status_code=503,
            content=_error_body(request, exc, "service_unavailable"),
            headers={"Retry-After": "5"},
        )

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
        retry_after = int(exc.retry_after) + 1
        body = _error_body(request, exc, "rate_limited")
        body["retry_after"] = round(exc.retry_after, 1)
        return JSONResponse(
            status_code=429,
            content=body,
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(exc.limit),
                "X-RateLimit-Remaining": "0",
            },
        )
