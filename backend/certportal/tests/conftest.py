from __future__ import annotations

import datetime as dt
import os
from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from typing import cast

import pytest
from httpx import ASGITransport, AsyncClient
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.types import ASGIApp

# Configure environment for tests before importing the app
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///./test_certportal.db")
os.environ.setdefault("JWT_SECRET", "test-secret-for-certportal")
os.environ.setdefault("ENV", "local")
os.environ.setdefault("LOG_LEVEL", "ERROR")
os.environ.setdefault("CORS_ALLOWED_ORIGINS", "http://testserver")
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ.setdefault("MAIL_HOST", "smtp.test.local")
os.environ.setdefault("MAIL_FROM_ADDRESS", "no-reply@example.com")

from certportal.core import clock  # noqa: E402
from certportal.core.database import (  # noqa: E402
    dispose_engine,
    drop_models,
    get_session_factory,
    init_models,
)
from certportal.core.errors import DeliveryError  # noqa: E402
from certportal.core.metrics import reset_metrics  # noqa: E402
from certportal.main import app  # noqa: E402
from certportal.services.mailer import get_otp_mailer  # noqa: E402

logger.remove()


class RecordingMailer:
    """Captures outgoing codes instead of talking to an SMTP server."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def send_otp(self, email: str, code: str, display_name: str) -> None:
        if self.fail:
            raise DeliveryError()
        self.sent.append((email, code, display_name))

    def last_code_for(self, email: str) -> str:
        for recipient, code, _ in reversed(self.sent):
            if recipient == email:
                return code
        raise AssertionError(f"No code sent to {email}")


class FrozenClock:
    def __init__(self, start: dt.datetime) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + dt.timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
async def database() -> AsyncIterator[None]:
    await init_models()
    yield
    await drop_models()
    await dispose_engine()


@pytest.fixture(autouse=True)
def metrics() -> None:
    reset_metrics()


@pytest.fixture(scope="session", autouse=True)
def remove_database_file() -> Iterator[None]:
    yield
    db_path = Path("test_certportal.db")
    if db_path.exists():
        db_path.unlink()


@pytest.fixture(autouse=True)
def mailer() -> Iterator[RecordingMailer]:
    recording = RecordingMailer()
    app.dependency_overrides[get_otp_mailer] = lambda: recording
    yield recording
    app.dependency_overrides.pop(get_otp_mailer, None)


@pytest.fixture()
def frozen_clock(monkeypatch: pytest.MonkeyPatch) -> FrozenClock:
    fake = FrozenClock(dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc))
    monkeypatch.setattr(clock, "utcnow", fake)
    return fake


@pytest.fixture()
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=cast(ASGIApp, app))  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture()
async def session() -> AsyncIterator[AsyncSession]:
    session_factory = get_session_factory()
    async with session_factory() as session:
        yield session
