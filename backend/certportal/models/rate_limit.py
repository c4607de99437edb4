"""Failed-attempt counters used by the brute-force guard."""
from __future__ import annotations

import datetime as dt

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from certportal.models.base import Base


class RateLimitCounter(Base):
    """Attempt count for one identifier within one action scope."""

    __tablename__ = "rate_limit_counters"
    __table_args__ = (UniqueConstraint("identifier", "scope", name="uq_rate_limit_identifier_scope"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    identifier: Mapped[str] = mapped_column(String(320), nullable=False)
    scope: Mapped[str] = mapped_column(String(64), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    window_started_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_attempt_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
