"""Revoked token identifiers."""
from __future__ import annotations

import datetime as dt

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from certportal.models.base import Base


class TokenDenylist(Base):
    """A token id that must be rejected until its original expiry."""

    __tablename__ = "token_denylist"
    __table_args__ = (Index("ix_token_denylist_expires_at", "expires_at"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    jti: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    expires_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
