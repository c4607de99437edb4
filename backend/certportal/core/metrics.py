"""Prometheus metrics collectors and helpers."""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

REGISTRY: CollectorRegistry
HTTP_REQUESTS_TOTAL: Counter
HTTP_REQUEST_DURATION: Histogram
AUTH_LOGINS_TOTAL: Counter
RATE_LIMIT_BLOCKS_TOTAL: Counter
OTP_EVENTS_TOTAL: Counter
CSRF_REJECTIONS_TOTAL: Counter
TOKEN_REJECTIONS_TOTAL: Counter


def _initialise_registry() -> None:
    global REGISTRY, HTTP_REQUESTS_TOTAL, HTTP_REQUEST_DURATION, AUTH_LOGINS_TOTAL
    global RATE_LIMIT_BLOCKS_TOTAL, OTP_EVENTS_TOTAL, CSRF_REJECTIONS_TOTAL, TOKEN_REJECTIONS_TOTAL

    registry = CollectorRegistry(auto_describe=True)
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)

    HTTP_REQUESTS_TOTAL = Counter(
        "http_requests_total",
        "Count of HTTP requests received",
        labelnames=("path", "method", "status"),
        registry=registry,
    )

    HTTP_REQUEST_DURATION = Histogram(
        "http_request_duration_seconds",
        "Histogram of request latency",
        labelnames=("path", "method"),
        registry=registry,
    )

    AUTH_LOGINS_TOTAL = Counter(
        "auth_logins_total",
        "Authentication results",
        labelnames=("outcome",),
        registry=registry,
    )

    RATE_LIMIT_BLOCKS_TOTAL = Counter(
        "rate_limit_blocks_total",
        "Requests rejected by the brute-force guard",
        labelnames=("scope",),
        registry=registry,
    )

    OTP_EVENTS_TOTAL = Counter(
        "otp_events_total",
        "One-time code lifecycle events",
        labelnames=("event", "outcome"),
        registry=registry,
    )

    CSRF_REJECTIONS_TOTAL = Counter(
        "csrf_rejections_total",
        "Mutating requests rejected for a bad CSRF token",
        labelnames=("reason",),
        registry=registry,
    )

    TOKEN_REJECTIONS_TOTAL = Counter(
        "token_rejections_total",
        "Bearer tokens rejected by the auth dependency",
        labelnames=("reason",),
        registry=registry,
    )

    REGISTRY = registry


_initialise_registry()


def render_metrics() -> bytes:
    """Return the current metrics snapshot in Prometheus format."""

    return generate_latest(REGISTRY)


def observe_request(path: str, method: str, status: int, latency_seconds: float) -> None:
    HTTP_REQUESTS_TOTAL.labels(path=path, method=method, status=str(status)).inc()
    HTTP_REQUEST_DURATION.labels(path=path, method=method).observe(latency_seconds)


def record_auth_login(outcome: str) -> None:
    AUTH_LOGINS_TOTAL.labels(outcome=outcome).inc()


def record_rate_limit_block(scope: str) -> None:
    RATE_LIMIT_BLOCKS_TOTAL.labels(scope=scope).inc()


def record_otp_event(event: str, outcome: str) -> None:
    OTP_EVENTS_TOTAL.labels(event=event, outcome=outcome).inc()


def record_csrf_rejection(reason: str) -> None:
    CSRF_REJECTIONS_TOTAL.labels(reason=reason).inc()


def record_token_rejection(reason: str) -> None:
    TOKEN_REJECTIONS_TOTAL.labels(reason=reason).inc()


def reset_metrics() -> None:
    """Reset collectors; intended for deterministic tests."""

    _initialise_registry()


__all__ = [
    "CONTENT_TYPE_LATEST",
    "REGISTRY",
    "render_metrics",
    "observe_request",
    "record_auth_login",
    "record_rate_limit_block",
    "record_otp_event",
    "record_csrf_rejection",
    "record_token_rejection",
    "reset_metrics",
]
