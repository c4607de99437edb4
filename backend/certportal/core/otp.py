"""One-time code issuance and verification for email ownership checks."""
from __future__ import annotations

import datetime as dt
import secrets
from typing import Protocol

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from certportal.core import clock
from certportal.core.config import get_settings
from certportal.core.database import upsert
from certportal.core.errors import DeliveryError, OtpExpired, OtpMismatch, OtpNotFound
from certportal.core.logging import mask_email
from certportal.core.metrics import record_otp_event
from certportal.core.security import hash_secret, verify_password
from certportal.models.otp import OtpRecord

OTP_LENGTH = 6


class OtpSender(Protocol):
    async def send_otp(self, email: str, code: str, display_name: str) -> None: ...


def normalize_email(email: str) -> str:
    return email.strip().lower()


class OtpManager:
    """Keeps at most one live code per email.

    Codes are stored only as bcrypt hashes. Generating a code overwrites the
    previous row, so an older code stops verifying as soon as a new one exists.
    """

    def __init__(
        self,
        session: AsyncSession,
        sender: OtpSender | None = None,
        *,
        ttl_seconds: int | None = None,
        cooldown_seconds: int | None = None,
    ) -> None:
        settings = get_settings()
        self._session = session
        self._sender = sender
        self._ttl = dt.timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.otp_ttl_seconds)
        self._cooldown = dt.timedelta(
            seconds=cooldown_seconds if cooldown_seconds is not None else settings.otp_cooldown_seconds
        )

    async def generate_otp(self, email: str) -> str:
        code = f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"
        now = clock.utcnow()
        values = {
            "email": normalize_email(email),
            "code_hash": hash_secret(code),
            "created_at": now,
            "expires_at": now + self._ttl,
            "last_sent_at": now,
            "consumed_at": None,
        }
        stmt = upsert(
            self._session,
            OtpRecord.__table__,  # type: ignore[arg-type]
            values,
            conflict_columns=["email"],
            update={key: value for key, value in values.items() if key != "email"},
        )
        await self._session.execute(stmt)
        record_otp_event("generate", "success")
        return code

    async def send_otp(self, email: str, code: str, display_name: str) -> None:
        if self._sender is None:
            raise DeliveryError("No mail transport configured.")
        try:
            await self._sender.send_otp(email, code, display_name)
        except DeliveryError:
            record_otp_event("send", "failure")
            raise
        except Exception as exc:
            record_otp_event("send", "failure")
            logger.bind(event="otp_send", recipient=mask_email(email)).exception("otp_delivery_failed")
            raise DeliveryError() from exc
        record_otp_event("send", "success")

    async def _load(self, email: str) -> OtpRecord | None:
        stmt = select(OtpRecord).where(OtpRecord.email == normalize_email(email))
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def verify_otp(self, email: str, submitted_code: str) -> None:
        """Consume the live code for ``email`` if ``submitted_code`` matches it."""

        record = await self._load(email)
        if record is None or record.consumed_at is not None:
            record_otp_event("verify", "not_found")
            raise OtpNotFound()

        now = clock.utcnow()
        if clock.is_expired(record.expires_at, now):
            await self._consume(record.id, now)
            record_otp_event("verify", "expired")
            raise OtpExpired()

        if not verify_password(submitted_code, record.code_hash):
            record_otp_event("verify", "mismatch")
            raise OtpMismatch()

        if not await self._consume(record.id, now):
            # another request consumed it between the read and this write
            record_otp_event("verify", "not_found")
            raise OtpNotFound()
        record_otp_event("verify", "success")
        logger.bind(event="otp_verified", email=mask_email(record.email)).info("otp_verified")

    async def _consume(self, record_id: int, now: dt.datetime) -> bool:
        stmt = (
            update(OtpRecord)
            .where(OtpRecord.id == record_id, OtpRecord.consumed_at.is_(None))
            .values(consumed_at=now)
        )
        result = await self._session.execute(stmt)
        return bool(result.rowcount)

    async def get_cooldown(self, email: str) -> int:
        """Seconds left before another code may be sent to ``email``."""

        record = await self._load(email)
        if record is None:
            return 0
        return clock.seconds_until(clock.ensure_aware(record.last_sent_at) + self._cooldown)

    async def purge_expired(self) -> int:
        result = await self._session.execute(delete(OtpRecord).where(OtpRecord.expires_at < clock.utcnow()))
        return int(result.rowcount or 0)
