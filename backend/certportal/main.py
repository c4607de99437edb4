"""FastAPI application entrypoint."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from loguru import logger
from starlette.exceptions import HTTPException

from certportal import __version__
from certportal.api.v1 import api_router
from certportal.core import clock
from certportal.core.config import get_settings
from certportal.core.csrf import CsrfGuard
from certportal.core.database import get_session_factory, init_models
from certportal.core.denylist import TokenDenylistStore
from certportal.core.errors import PortalError
from certportal.core.health import build_health_payload
from certportal.core.logging import RequestLoggingMiddleware, configure_logging, record_validation_error
from certportal.core.metrics import CONTENT_TYPE_LATEST, render_metrics
from certportal.core.otp import OtpManager
from certportal.core.rate_limiter import AttemptLimiter

settings = get_settings()
configure_logging(settings.log_level)


async def purge_expired_state() -> dict[str, int]:
    """Delete denylist, CSRF, OTP and rate-limit rows that can no longer matter."""

    longest_window = max(
        settings.login_window_seconds,
        settings.register_window_seconds,
        settings.otp_verify_window_seconds,
        settings.otp_resend_window_seconds,
    )
    session_factory = get_session_factory()
    async with session_factory() as session:
        counts = {
            "denylist": await TokenDenylistStore(session).purge_expired(),
            "csrf_sessions": await CsrfGuard(session, ttl_seconds=settings.session_ttl_seconds).purge_expired(),
            "otp_records": await OtpManager(session).purge_expired(),
            "rate_limits": await AttemptLimiter(session).purge_expired(longest_window),
        }
        await session.commit()
    return counts


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.is_local:
        await init_models()
    counts = await purge_expired_state()
    if any(counts.values()):
        logger.bind(**counts).info("expired_state_purged")
    yield


app = FastAPI(title="BSKI Portal Auth", version=__version__, lifespan=lifespan)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-CSRF-Token"],
)


def _error_body(code: str, message: str, details: Any | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {
        "status": "error",
        "code": code,
        "message": message,
        "timestamp": clock.utcnow().isoformat(),
    }
    if details is not None:
        body["details"] = details
    return body


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    message = exc.message
    if not exc.kind.is_recoverable:
        # server-side faults never echo their internal message
        request.state.error_detail = exc.code
        logger.bind(code=exc.code, reason=exc.message).error("server_error")
        message = type(exc).message
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.code, message, exc.details),
        headers=exc.headers(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        request.state.error_detail = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body("http_error", str(exc.detail)),
        headers=exc.headers or None,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]
    record_validation_error(request, "validation_error", errors)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("validation_error", "Request validation failed.", {"errors": errors}),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request.state.error_detail = exc.__class__.__name__
    logger.exception("Unhandled application error")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("server_error", "Internal server error."),
    )


app.include_router(api_router)


@app.get("/health", tags=["health"], response_model=dict)
async def health() -> dict[str, Any]:
    """Return infrastructure-focused health telemetry."""

    return await build_health_payload(settings.version or __version__)


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose Prometheus-formatted metrics."""

    return Response(content=render_metrics(), media_type=CONTENT_TYPE_LATEST)
