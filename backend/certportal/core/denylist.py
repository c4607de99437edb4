"""Persistent store of revoked token identifiers."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from certportal.core import clock, jwt
from certportal.core.database import upsert
from certportal.core.errors import MalformedToken, TokenExpired
from certportal.models.token_denylist import TokenDenylist


class TokenDenylistStore:
    """Repository for revoked tokens; callers own the transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def deny(self, token: str) -> bool:
        """Revoke ``token``. Returns False when it is already expired.

        Tokens that fail signature checks raise the codec's error unchanged.
        """

        try:
            claims = jwt.decode(token)
        except TokenExpired:
            return False
        return await self.deny_claims(claims)

    async def deny_claims(self, claims: Mapping[str, Any]) -> bool:
        jti = claims.get("jti")
        exp = claims.get("exp")
        if not jti or exp is None:
            raise MalformedToken("Token has no identifier.")
        expires_at = clock.from_timestamp(exp)
        if clock.is_expired(expires_at):
            return False

        await self.purge_expired()
        stmt = upsert(
            self._session,
            TokenDenylist.__table__,  # type: ignore[arg-type]
            {"jti": str(jti), "expires_at": expires_at, "created_at": clock.utcnow()},
            conflict_columns=["jti"],
        )
        await self._session.execute(stmt)
        logger.bind(event="token_denied", jti=str(jti)).info("token_denylisted")
        return True

    async def is_denied(self, jti: str) -> bool:
        stmt = select(TokenDenylist.id).where(TokenDenylist.jti == jti)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def purge_expired(self) -> int:
        """Delete entries whose token would be rejected as expired anyway."""

        stmt = delete(TokenDenylist).where(TokenDenylist.expires_at < clock.utcnow())
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)
