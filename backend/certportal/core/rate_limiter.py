"""Database-backed brute-force guard with fixed per-scope windows."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

from loguru import logger
from sqlalchemy import and_, case, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from certportal.core import clock
from certportal.core.config import Settings, get_settings
from certportal.core.database import upsert
from certportal.core.errors import RateLimited
from certportal.core.metrics import record_rate_limit_block
from certportal.models.rate_limit import RateLimitCounter

LOGIN = "login"
REGISTER = "register"
OTP_VERIFY_IP = "otp_verify_ip"
OTP_VERIFY_EMAIL = "otp_verify_email"
OTP_RESEND = "otp_resend"


@dataclass(frozen=True, slots=True)
class RateLimitPolicy:
    """Threshold for one action scope."""

    scope: str
    max_attempts: int
    window_seconds: int


def policy_for(scope: str, settings: Settings | None = None) -> RateLimitPolicy:
    """Return the configured policy for a known scope."""

    cfg = settings or get_settings()
    limits = {
        LOGIN: (cfg.login_max_attempts, cfg.login_window_seconds),
        REGISTER: (cfg.register_max_attempts, cfg.register_window_seconds),
        OTP_VERIFY_IP: (cfg.otp_verify_ip_max_attempts, cfg.otp_verify_window_seconds),
        OTP_VERIFY_EMAIL: (cfg.otp_verify_email_max_attempts, cfg.otp_verify_window_seconds),
        OTP_RESEND: (cfg.otp_resend_max_attempts, cfg.otp_resend_window_seconds),
    }
    try:
        max_attempts, window_seconds = limits[scope]
    except KeyError as exc:
        raise ValueError(f"Unknown rate limit scope: {scope}") from exc
    return RateLimitPolicy(scope=scope, max_attempts=max_attempts, window_seconds=window_seconds)


class AttemptLimiter:
    """Counts failures per ``(identifier, scope)``.

    A window opens at the first failure and lasts ``window_seconds``; once it
    has elapsed the next failure starts a fresh window with a count of one.
    Increments are a single upsert so concurrent failures are never lost.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def register_failure(self, identifier: str, scope: str, window_seconds: int) -> None:
        now = clock.utcnow()
        window_closed = RateLimitCounter.window_started_at <= now - dt.timedelta(seconds=window_seconds)
        stmt = upsert(
            self._session,
            RateLimitCounter.__table__,  # type: ignore[arg-type]
            {
                "identifier": identifier,
                "scope": scope,
                "attempts": 1,
                "window_started_at": now,
                "last_attempt_at": now,
            },
            conflict_columns=["identifier", "scope"],
            # attempts must be assigned before window_started_at changes (MySQL evaluates in order)
            update={
                "attempts": case((window_closed, 1), else_=RateLimitCounter.attempts + 1),
                "window_started_at": case((window_closed, now), else_=RateLimitCounter.window_started_at),
                "last_attempt_at": now,
            },
        )
        await self._session.execute(stmt)

    async def _load(self, identifier: str, scope: str) -> RateLimitCounter | None:
        stmt = select(RateLimitCounter).where(
            and_(RateLimitCounter.identifier == identifier, RateLimitCounter.scope == scope)
        )
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def is_blocked(self, identifier: str, scope: str, max_attempts: int, window_seconds: int) -> bool:
        counter = await self._load(identifier, scope)
        if counter is None:
            return False
        window_end = clock.ensure_aware(counter.window_started_at) + dt.timedelta(seconds=window_seconds)
        if clock.is_expired(window_end):
            return False
        return counter.attempts >= max_attempts

    async def retry_after(self, identifier: str, scope: str, window_seconds: int) -> int:
        counter = await self._load(identifier, scope)
        if counter is None:
            return 0
        window_end = clock.ensure_aware(counter.window_started_at) + dt.timedelta(seconds=window_seconds)
        return clock.seconds_until(window_end)

    async def clear(self, identifier: str, scope: str) -> None:
        stmt = delete(RateLimitCounter).where(
            and_(RateLimitCounter.identifier == identifier, RateLimitCounter.scope == scope)
        )
        await self._session.execute(stmt)

    async def enforce(self, identifier: str, policy: RateLimitPolicy) -> None:
        """Raise :class:`RateLimited` if ``identifier`` is blocked for the policy's scope."""

        if not await self.is_blocked(identifier, policy.scope, policy.max_attempts, policy.window_seconds):
            return
        retry_after = await self.retry_after(identifier, policy.scope, policy.window_seconds)
        record_rate_limit_block(policy.scope)
        logger.bind(event="rate_limit_blocked", scope=policy.scope, retry_after=retry_after).warning(
            "rate_limit_blocked"
        )
        raise RateLimited(retry_after=retry_after)

    async def purge_expired(self, max_window_seconds: int) -> int:
        cutoff = clock.utcnow() - dt.timedelta(seconds=max_window_seconds)
        result = await self._session.execute(
            delete(RateLimitCounter).where(RateLimitCounter.window_started_at < cutoff)
        )
        return int(result.rowcount or 0)
