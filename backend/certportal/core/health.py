"""Health payload for the auth service."""
from __future__ import annotations

import asyncio
import datetime as dt
from typing import Any

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from certportal.core import clock
from certportal.core.database import check_connection, get_session_factory
from certportal.models.csrf_session import CsrfSession
from certportal.models.otp import OtpRecord
from certportal.models.token_denylist import TokenDenylist

_PROCESS_STARTED_AT = clock.utcnow()


def get_uptime_seconds() -> float:
    return round((dt.datetime.now(dt.timezone.utc) - _PROCESS_STARTED_AT).total_seconds(), 2)


async def database_health(timeout_seconds: float = 2.0) -> dict[str, str]:
    """Run ``SELECT 1`` and classify the result as ok, degraded or down."""

    try:
        await asyncio.wait_for(check_connection(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.bind(timeout=timeout_seconds).warning("database_health_timeout")
        return {"state": "degraded", "reason": f"No answer within {timeout_seconds} seconds"}
    except Exception as exc:
        logger.exception("database_health_failed")
        return {"state": "down", "reason": str(exc)}
    return {"state": "ok"}


async def _count(session: AsyncSession, model: Any, *conditions: Any) -> int:
    stmt = select(func.count()).select_from(model).where(*conditions)
    return int((await session.execute(stmt)).scalar_one())


async def auth_state() -> dict[str, dict[str, int]]:
    """Live and purgeable row counts for the security tables.

    ``awaiting_purge`` counts rows that are already expired; a steadily
    growing number means the startup purge is not running.
    """

    now = clock.utcnow()
    async with get_session_factory()() as session:
        return {
            "denylist": {
                "active": await _count(session, TokenDenylist, TokenDenylist.expires_at >= now),
                "awaiting_purge": await _count(session, TokenDenylist, TokenDenylist.expires_at < now),
            },
            "csrf_sessions": {
                "active": await _count(session, CsrfSession, CsrfSession.expires_at >= now),
                "awaiting_purge": await _count(session, CsrfSession, CsrfSession.expires_at < now),
            },
            "otp_codes": {
                "pending": await _count(
                    session, OtpRecord, OtpRecord.consumed_at.is_(None), OtpRecord.expires_at >= now
                ),
                "awaiting_purge": await _count(session, OtpRecord, OtpRecord.expires_at < now),
            },
        }


async def build_health_payload(version: str | None) -> dict[str, Any]:
    db_status = await database_health()
    payload: dict[str, Any] = {
        "uptime_seconds": get_uptime_seconds(),
        "db_status": db_status,
        "version": version or "unknown",
        "auth_state": None,
    }
    if db_status["state"] == "ok":
        payload["auth_state"] = await auth_state()
    return payload
