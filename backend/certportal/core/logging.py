"""Structured logging utilities."""
from __future__ import annotations

import re
import sys
import time
import uuid
from collections.abc import Mapping, MutableMapping
from typing import Any, cast

from fastapi import Request
from loguru import logger
from starlette.types import ASGIApp, Receive, Scope, Send

from certportal.core.metrics import observe_request

REDACTED = "[REDACTED]"
_SENSITIVE_KEYS = frozenset(
    {
        "password",
        "confirm_password",
        "confirmpassword",
        "current_password",
        "new_password",
        "confirm_new_password",
        "otp",
        "token",
        "access_token",
        "refresh_token",
        "csrf_token",
        "secret",
        "authorization",
    }
)
_BEARER_PATTERN = re.compile(r"Bearer\s+[A-Za-z0-9\-_.]+")
_OTP_PATTERN = re.compile(r"\b\d{6}\b")


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru to emit JSON-formatted, single-line logs."""

    logger.remove()
    logger.add(
        sys.stdout,
        level=level.upper(),
        serialize=True,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )


def _client_host(scope: Scope) -> str | None:
    client = scope.get("client")
    if client and isinstance(client, tuple):
        return cast(str, client[0])
    return None


class RequestLoggingMiddleware:
    """ASGI middleware that records structured request metrics."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope_state = scope.setdefault("state", {})
        request_id = str(uuid.uuid4())
        scope_state["request_id"] = request_id
        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "")
        client_host = _client_host(scope)
        start = time.perf_counter()
        log = logger.bind(request_id=request_id, path=path, method=method)
        if client_host:
            log = log.bind(ip=client_host)

        responded = False

        async def send_wrapper(message: MutableMapping[str, Any]) -> None:
            nonlocal responded
            if message["type"] == "http.response.start" and not responded:
                responded = True
                status_code = int(message.get("status", 500))
                elapsed_seconds = time.perf_counter() - start
                route = scope.get("route")
                path_template = str(getattr(route, "path", path)) if route is not None else path
                observe_request(path_template, method, status_code, elapsed_seconds)
                log_context: dict[str, Any] = {
                    "status_code": status_code,
                    "latency_ms": round(elapsed_seconds * 1000, 2),
                }
                if user_id := scope_state.get("user_id"):
                    log_context["user_id"] = user_id
                if status_code >= 500 and (error_detail := scope_state.get("error_detail")):
                    log_context["error"] = error_detail
                log.bind(**log_context).info("request_completed")
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            scope_state["error_detail"] = exc.__class__.__name__
            log.bind(
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
                error=exc.__class__.__name__,
            ).exception("request_failed")
            raise


def mask_email(email: str) -> str:
    """Return a partially masked email safe for logging."""

    if "@" not in email:
        return email
    name, domain = email.split("@", 1)
    if len(name) <= 2:
        masked = name[:1] + "*" * max(0, len(name) - 1)
    else:
        masked = name[0] + "*" * (len(name) - 2) + name[-1]
    return f"{masked}@{domain}"


def sanitize_for_log(value: Any) -> Any:
    """Redact secrets from a structure before it is attached to a log record."""

    if isinstance(value, Mapping):
        cleaned: dict[str, Any] = {}
        for key, item in value.items():
            if str(key).lower() in _SENSITIVE_KEYS:
                cleaned[key] = REDACTED
            elif str(key).lower() == "email" and isinstance(item, str):
                cleaned[key] = mask_email(item)
            else:
                cleaned[key] = sanitize_for_log(item)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [sanitize_for_log(item) for item in value]
    if isinstance(value, str):
        return _OTP_PATTERN.sub(REDACTED, _BEARER_PATTERN.sub(f"Bearer {REDACTED}", value))
    return value


def record_validation_error(request: Request, error: str, details: Any | None = None) -> None:
    """Log validation issues without exposing PII."""

    context: dict[str, Any] = {
        "path": request.url.path,
        "method": request.method,
        "details": sanitize_for_log(details),
    }
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        context["request_id"] = request_id
    logger.bind(**context).warning(error)


def security_event(event: str, **context: Any) -> None:
    """Emit a security audit record (failed logins, lockouts, revocations)."""

    logger.bind(event=event, **sanitize_for_log(context)).warning("security_event")
