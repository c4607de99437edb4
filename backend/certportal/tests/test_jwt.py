from __future__ import annotations

import base64
import json

import pytest
from freezegun import freeze_time
from jose import jwt as jose_jwt  # type: ignore[import-untyped]

from certportal.core import jwt
from certportal.core.errors import ConfigurationError, InvalidSignature, MalformedToken, TokenExpired

SECRET = "unit-test-secret"
CLAIMS = {"user_id": 7, "email": "user@example.com", "role": "user", "status": "active", "type": "access"}


def _b64(data: dict[str, object]) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def test_roundtrip_preserves_claims() -> None:
    token = jwt.encode(CLAIMS, 60, secret=SECRET)

    assert token.count(".") == 2
    decoded = jwt.decode(token, secret=SECRET)
    for key, value in CLAIMS.items():
        assert decoded[key] == value  # type: ignore[literal-required]
    assert decoded["exp"] - decoded["iat"] == 60
    assert len(decoded["jti"]) == 32


def test_each_token_gets_a_unique_identifier() -> None:
    first = jwt.decode(jwt.encode(CLAIMS, 60, secret=SECRET), secret=SECRET)
    second = jwt.decode(jwt.encode(CLAIMS, 60, secret=SECRET), secret=SECRET)
    assert first["jti"] != second["jti"]


def test_reserved_claims_cannot_be_supplied() -> None:
    token = jwt.encode({**CLAIMS, "exp": 1, "jti": "fixed"}, 60, secret=SECRET)
    decoded = jwt.decode(token, secret=SECRET)
    assert decoded["exp"] != 1
    assert decoded["jti"] != "fixed"


def test_token_expires_exactly_at_ttl() -> None:
    with freeze_time("2024-05-01T12:00:00Z") as frozen:
        token = jwt.encode(CLAIMS, 60, secret=SECRET)
        frozen.tick(59)
        assert jwt.decode(token, secret=SECRET)["user_id"] == 7
        frozen.tick(1)
        with pytest.raises(TokenExpired):
            jwt.decode(token, secret=SECRET)


def test_expired_token_can_be_read_without_expiry_check() -> None:
    with freeze_time("2024-05-01T12:00:00Z") as frozen:
        token = jwt.encode(CLAIMS, 5, secret=SECRET)
        frozen.tick(30)
        assert jwt.decode(token, secret=SECRET, verify_exp=False)["email"] == "user@example.com"


def test_wrong_secret_is_rejected() -> None:
    token = jwt.encode(CLAIMS, 60, secret=SECRET)
    with pytest.raises(InvalidSignature):
        jwt.decode(token, secret="another-secret")


def test_tampered_payload_is_rejected() -> None:
    token = jwt.encode(CLAIMS, 60, secret=SECRET)
    header, payload, signature = token.split(".")
    claims = jwt.decode(token, secret=SECRET)
    forged = _b64({**claims, "role": "admin"})
    with pytest.raises(InvalidSignature):
        jwt.decode(".".join([header, forged, signature]), secret=SECRET)


@pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "..", "###.###.###"])
def test_malformed_tokens(token: str) -> None:
    with pytest.raises(MalformedToken):
        jwt.decode(token, secret=SECRET)


def test_unsigned_token_is_rejected() -> None:
    token = ".".join([_b64({"alg": "none", "typ": "JWT"}), _b64({**CLAIMS, "exp": 4102444800}), "sig"])
    with pytest.raises(InvalidSignature):
        jwt.decode(token, secret=SECRET)


def test_other_hmac_algorithm_is_rejected() -> None:
    token = jose_jwt.encode({**CLAIMS, "exp": 4102444800}, SECRET, algorithm="HS512")
    with pytest.raises(InvalidSignature):
        jwt.decode(token, secret=SECRET)


def test_missing_secret_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        jwt.encode(CLAIMS, 60, secret="")
    with pytest.raises(ConfigurationError):
        jwt.decode("a.b.c", secret="")


def test_user_tokens_carry_type_discriminator() -> None:
    class _User:
        id = 3
        email = "owner@example.com"
        role = "user"
        status = "active"

    access = jwt.decode(jwt.create_access_token(_User()))
    refresh = jwt.decode(jwt.create_refresh_token(_User()))

    assert access["type"] == "access"
    assert refresh["type"] == "refresh"
    assert refresh["exp"] - refresh["iat"] > access["exp"] - access["iat"]
