"""Common FastAPI dependencies."""
from __future__ import annotations

import json
from typing import Annotated, Any

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from certportal.core import jwt
from certportal.core.config import get_settings
from certportal.core.csrf import CSRF_FIELD, CSRF_HEADER, CsrfGuard, new_session_id
from certportal.core.database import get_db_session
from certportal.core.denylist import TokenDenylistStore
from certportal.core.errors import TokenRevoked, Unauthorized
from certportal.core.metrics import record_token_rejection

DBSession = Annotated[AsyncSession, Depends(get_db_session)]


def client_ip(request: Request) -> str:
    """Resolve the caller address used as the rate-limit identifier."""

    if get_settings().trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",", 1)[0].strip()
    if request.client:
        return request.client.host or "unknown"
    return "unknown"


def extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


async def require_auth(request: Request, session: DBSession) -> jwt.TokenPayload:
    """Return the claims of a valid, non-revoked access token or raise ``Unauthorized``."""

    token = extract_bearer_token(request)
    if token is None:
        record_token_rejection("missing")
        raise Unauthorized("Missing credentials.")
    try:
        claims = jwt.decode(token)
    except Unauthorized as exc:
        record_token_rejection(exc.code)
        raise

    if claims.get("type", jwt.TokenType.ACCESS.value) != jwt.TokenType.ACCESS.value:
        record_token_rejection("wrong_type")
        raise Unauthorized("Access token required.", code="invalid_token")

    jti = claims.get("jti")
    if not jti or await TokenDenylistStore(session).is_denied(jti):
        record_token_rejection("revoked")
        raise TokenRevoked()

    request.state.user_id = claims.get("user_id")
    return claims


AuthClaims = Annotated[jwt.TokenPayload, Depends(require_auth)]


def get_csrf_guard(session: DBSession) -> CsrfGuard:
    return CsrfGuard(session, ttl_seconds=get_settings().session_ttl_seconds)


CsrfGuardDep = Annotated[CsrfGuard, Depends(get_csrf_guard)]


def session_id_from(request: Request) -> str | None:
    return request.cookies.get(get_settings().session_cookie_name)


def ensure_session_id(request: Request, response: Response) -> str:
    """Return the caller's session id, minting one and setting the cookie if absent."""

    existing = session_id_from(request)
    if existing:
        return existing
    session_id = new_session_id()
    set_session_cookie(response, session_id)
    return session_id


def set_session_cookie(response: Response, session_id: str) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        session_id,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
    )


async def read_json_body(request: Request) -> dict[str, Any]:
    """Parse the JSON body leniently so validation errors are ours to shape."""

    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return payload if isinstance(payload, dict) else {}


def presented_csrf_token(request: Request, body: dict[str, Any]) -> str | None:
    header_value = request.headers.get(CSRF_HEADER)
    if header_value:
        return header_value
    value = body.get(CSRF_FIELD)
    return value if isinstance(value, str) and value else None


async def require_csrf(request: Request, guard: CsrfGuardDep) -> str:
    """Validate the CSRF token of a mutating request and return the session id."""

    body = await read_json_body(request)
    session_id = session_id_from(request)
    await guard.require_valid_token(session_id, presented_csrf_token(request, body))
    return session_id  # type: ignore[return-value]


CsrfSessionId = Annotated[str, Depends(require_csrf)]
