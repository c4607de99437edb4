from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certportal.core.database import get_session_factory
from certportal.core.errors import DeliveryError, OtpExpired, OtpMismatch, OtpNotFound
from certportal.core.otp import OtpManager
from certportal.models.otp import OtpRecord

EMAIL = "owner@example.com"


def _wrong(code: str) -> str:
    return f"{(int(code) + 1) % 1_000_000:06d}"


@pytest.mark.asyncio
async def test_generated_code_is_six_digits_and_stored_hashed(session: AsyncSession) -> None:
    code = await OtpManager(session).generate_otp(EMAIL)

    assert len(code) == 6 and code.isdigit()
    record = (await session.execute(select(OtpRecord).where(OtpRecord.email == EMAIL))).scalar_one()
    assert record.code_hash != code
    assert record.consumed_at is None


@pytest.mark.asyncio
async def test_code_verifies_exactly_once(session: AsyncSession) -> None:
    manager = OtpManager(session)
    code = await manager.generate_otp(EMAIL)

    await manager.verify_otp(EMAIL, code)
    with pytest.raises(OtpNotFound):
        await manager.verify_otp(EMAIL, code)


@pytest.mark.asyncio
async def test_wrong_code_does_not_burn_the_record(session: AsyncSession) -> None:
    manager = OtpManager(session)
    code = await manager.generate_otp(EMAIL)

    with pytest.raises(OtpMismatch):
        await manager.verify_otp(EMAIL, _wrong(code))
    await manager.verify_otp(EMAIL, code)


@pytest.mark.asyncio
async def test_expired_code_is_rejected_and_consumed(session: AsyncSession, frozen_clock) -> None:
    manager = OtpManager(session, ttl_seconds=600)
    code = await manager.generate_otp(EMAIL)

    frozen_clock.advance(600)
    with pytest.raises(OtpExpired):
        await manager.verify_otp(EMAIL, code)
    with pytest.raises(OtpNotFound):
        await manager.verify_otp(EMAIL, code)


@pytest.mark.asyncio
async def test_new_code_supersedes_previous(session: AsyncSession) -> None:
    manager = OtpManager(session)
    first = await manager.generate_otp(EMAIL)
    second = await manager.generate_otp(EMAIL)
    while second == first:
        second = await manager.generate_otp(EMAIL)

    with pytest.raises(OtpMismatch):
        await manager.verify_otp(EMAIL, first)
    await manager.verify_otp(EMAIL, second)

    rows = (await session.execute(select(OtpRecord))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_email_lookup_is_case_insensitive(session: AsyncSession) -> None:
    manager = OtpManager(session)
    code = await manager.generate_otp("Owner@Example.com ")
    await manager.verify_otp(EMAIL, code)


@pytest.mark.asyncio
async def test_unknown_email_has_no_code(session: AsyncSession) -> None:
    manager = OtpManager(session)
    with pytest.raises(OtpNotFound):
        await manager.verify_otp("nobody@example.com", "123456")
    assert await manager.get_cooldown("nobody@example.com") == 0


@pytest.mark.asyncio
async def test_cooldown_counts_down_to_zero(session: AsyncSession, frozen_clock) -> None:
    manager = OtpManager(session, cooldown_seconds=60)
    await manager.generate_otp(EMAIL)

    readings = [await manager.get_cooldown(EMAIL)]
    for step in (20, 20, 19, 1, 30):
        frozen_clock.advance(step)
        readings.append(await manager.get_cooldown(EMAIL))

    assert readings == [60, 40, 20, 1, 0, 0]
    assert readings == sorted(readings, reverse=True)


class _FailingSender:
    async def send_otp(self, email: str, code: str, display_name: str) -> None:
        raise ConnectionError("smtp down")


class _CapturingSender:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []

    async def send_otp(self, email: str, code: str, display_name: str) -> None:
        self.calls.append((email, code, display_name))


@pytest.mark.asyncio
async def test_send_delegates_to_transport(session: AsyncSession) -> None:
    sender = _CapturingSender()
    manager = OtpManager(session, sender)
    code = await manager.generate_otp(EMAIL)

    await manager.send_otp(EMAIL, code, "Owner")
    assert sender.calls == [(EMAIL, code, "Owner")]


@pytest.mark.asyncio
async def test_send_failures_surface_as_delivery_error(session: AsyncSession) -> None:
    with pytest.raises(DeliveryError):
        await OtpManager(session, _FailingSender()).send_otp(EMAIL, "123456", "Owner")
    with pytest.raises(DeliveryError):
        await OtpManager(session).send_otp(EMAIL, "123456", "Owner")


@pytest.mark.asyncio
async def test_concurrent_verification_has_one_winner(session: AsyncSession) -> None:
    code = await OtpManager(session).generate_otp(EMAIL)
    await session.commit()
    session_factory = get_session_factory()

    async def _attempt() -> str:
        async with session_factory() as attempt_session:
            try:
                await OtpManager(attempt_session).verify_otp(EMAIL, code)
            except OtpNotFound:
                return "not_found"
            await attempt_session.commit()
            return "verified"

    outcomes = await asyncio.gather(_attempt(), _attempt())

    assert sorted(outcomes) == ["not_found", "verified"]
