from __future__ import annotations

import pytest

from certportal.core.config import Settings


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("http://a.example,http://b.example", ["http://a.example", "http://b.example"]),
        (" http://a.example , ", ["http://a.example"]),
        ('["http://a.example", "http://b.example"]', ["http://a.example", "http://b.example"]),
        ("", ["http://localhost", "http://localhost:5173"]),
    ],
)
def test_cors_origins_from_env(monkeypatch: pytest.MonkeyPatch, raw: str, expected: list[str]) -> None:
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", raw)

    assert Settings().cors_origins == expected


def test_non_local_env_requires_jwt_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENV", "prod")
    monkeypatch.setenv("JWT_SECRET", "change-me")

    with pytest.raises(ValueError):
        Settings().require_production_secrets()
