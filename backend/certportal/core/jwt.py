"""JWT encoding and verification."""
from __future__ import annotations

import binascii
import uuid
from enum import Enum
from typing import Any, Mapping, TypedDict, cast

from jose import JWTError, jwt  # type: ignore[import-untyped]
from jose.exceptions import JWSError  # type: ignore[import-untyped]

from certportal.core import clock
from certportal.core.config import get_settings
from certportal.core.errors import ConfigurationError, InvalidSignature, MalformedToken, TokenExpired

JWT_ALGORITHM = "HS256"

# Claims the codec owns; callers cannot override them through ``encode``.
_RESERVED_CLAIMS = ("iat", "exp", "jti")


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenPayload(TypedDict, total=False):
    user_id: int
    email: str
    role: str
    status: str
    type: str
    jti: str
    iat: int
    exp: int


def _signing_key(secret: str | None) -> str:
    key = secret if secret is not None else get_settings().jwt_secret.get_secret_value()
    if not key:
        raise ConfigurationError("JWT secret is not configured.")
    return key


def encode(claims: Mapping[str, Any], ttl_seconds: int, *, secret: str | None = None) -> str:
    """Sign ``claims`` into a compact token valid for ``ttl_seconds``."""

    key = _signing_key(secret)
    now = clock.utcnow()
    payload = {name: value for name, value in claims.items() if name not in _RESERVED_CLAIMS}
    payload["iat"] = clock.to_timestamp(now)
    payload["exp"] = payload["iat"] + int(ttl_seconds)
    payload["jti"] = uuid.uuid4().hex
    return cast(str, jwt.encode(payload, key, algorithm=JWT_ALGORITHM))


def _inspect(token: str) -> tuple[dict[str, Any], dict[str, Any]]:
    if not isinstance(token, str) or token.count(".") != 2 or not all(token.split(".")):
        raise MalformedToken()
    try:
        header = jwt.get_unverified_header(token)
        claims = jwt.get_unverified_claims(token)
    except (JWTError, JWSError, binascii.Error, ValueError, UnicodeDecodeError) as exc:
        raise MalformedToken() from exc
    if not isinstance(header, dict) or not isinstance(claims, dict):
        raise MalformedToken()
    return header, claims


def decode(token: str, *, secret: str | None = None, verify_exp: bool = True) -> TokenPayload:
    """Verify ``token`` and return its claims.

    Only HS256 is accepted; a header naming any other algorithm is rejected
    before the signature is checked.
    """

    key = _signing_key(secret)
    header, _ = _inspect(token)
    if header.get("alg") != JWT_ALGORITHM:
        raise InvalidSignature()

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[JWT_ALGORITHM],
            options={"verify_exp": False, "verify_iat": False, "verify_nbf": False, "verify_aud": False},
        )
    except JWTError as exc:
        raise InvalidSignature() from exc

    exp = payload.get("exp")
    if not isinstance(exp, (int, float)):
        raise MalformedToken("Token has no expiry.")
    if verify_exp and clock.is_expired(clock.from_timestamp(exp), leeway=get_settings().jwt_leeway_seconds):
        raise TokenExpired()
    return cast(TokenPayload, payload)


def _user_claims(user: Any, token_type: TokenType) -> dict[str, Any]:
    return {
        "user_id": user.id,
        "email": user.email,
        "role": getattr(user.role, "value", user.role),
        "status": getattr(user.status, "value", user.status),
        "type": token_type.value,
    }


def create_access_token(user: Any) -> str:
    """Create an access token for the given user."""

    return encode(_user_claims(user, TokenType.ACCESS), get_settings().access_token_ttl_seconds)


def create_refresh_token(user: Any) -> str:
    """Create a refresh token for the given user."""

    return encode(_user_claims(user, TokenType.REFRESH), get_settings().refresh_token_ttl_seconds)
