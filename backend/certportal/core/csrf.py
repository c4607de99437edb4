"""Session-bound anti-forgery tokens with rotation on use."""
from __future__ import annotations

import datetime as dt
import hashlib
import hmac
import secrets
from typing import NoReturn

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from certportal.core import clock
from certportal.core.database import upsert
from certportal.core.errors import CsrfMismatch
from certportal.core.metrics import record_csrf_rejection
from certportal.models.csrf_session import CsrfSession

CSRF_HEADER = "X-CSRF-Token"
CSRF_FIELD = "csrf_token"


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class CsrfGuard:
    """Issues and validates the single current CSRF token of a session.

    Only a digest of the token is persisted. Validation never rotates; the
    endpoint calls :meth:`issue_token` again once its work has succeeded.
    """

    def __init__(self, session: AsyncSession, *, ttl_seconds: int) -> None:
        self._session = session
        self._ttl = dt.timedelta(seconds=ttl_seconds)

    async def issue_token(self, session_id: str) -> str:
        token = secrets.token_hex(32)
        now = clock.utcnow()
        values = {
            "session_id": session_id,
            "token_hash": _digest(token),
            "issued_at": now,
            "expires_at": now + self._ttl,
        }
        stmt = upsert(
            self._session,
            CsrfSession.__table__,  # type: ignore[arg-type]
            values,
            conflict_columns=["session_id"],
            update={key: value for key, value in values.items() if key != "session_id"},
        )
        await self._session.execute(stmt)
        return token

    async def require_valid_token(self, session_id: str | None, presented: str | None) -> None:
        """Raise :class:`CsrfMismatch` unless ``presented`` is the session's current token."""

        if not session_id or not presented:
            self._reject("missing")
        stmt = select(CsrfSession).where(CsrfSession.session_id == session_id)
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        record = result.scalar_one_or_none()
        if record is None:
            self._reject("unknown_session")
        if clock.is_expired(record.expires_at):
            self._reject("expired")
        if not hmac.compare_digest(record.token_hash, _digest(presented)):
            self._reject("mismatch")

    async def end_session(self, session_id: str) -> None:
        await self._session.execute(delete(CsrfSession).where(CsrfSession.session_id == session_id))

    async def purge_expired(self) -> int:
        result = await self._session.execute(delete(CsrfSession).where(CsrfSession.expires_at < clock.utcnow()))
        return int(result.rowcount or 0)

    @staticmethod
    def _reject(reason: str) -> NoReturn:
        record_csrf_rejection(reason)
        logger.bind(event="csrf_rejected", reason=reason).warning("csrf_validation_failed")
        raise CsrfMismatch()
