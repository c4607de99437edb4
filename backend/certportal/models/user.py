"""User and company records."""
from __future__ import annotations

import datetime as dt
import enum
import uuid

from sqlalchemy import DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certportal.models.base import Base, TimestampMixin


class UserStatus(str, enum.Enum):
    """Lifecycle states a portal account moves through."""

    PENDING_VERIFICATION = "pending_verification"
    PENDING_DOCUMENT_VERIFICATION = "pending_document_verification"
    PENDING_ADMIN_APPROVAL = "pending_admin_approval"
    ACTIVE = "active"
    VERIFIED = "verified"
    SUSPENDED = "suspended"


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class User(TimestampMixin, Base):
    """Portal account; one per registering company representative."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    phone: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, name="userstatus", values_callable=_enum_values),
        nullable=False,
        default=UserStatus.PENDING_VERIFICATION,
    )
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="userrole", values_callable=_enum_values),
        nullable=False,
        default=UserRole.USER,
    )
    email_verified_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    company: Mapped[Company | None] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan", lazy="selectin"
    )


class Company(TimestampMixin, Base):
    """Company profile captured at registration."""

    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    npwp: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    nib: Mapped[str] = mapped_column(String(13), nullable=False, unique=True, index=True)
    address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(String(128))
    postal_code: Mapped[str | None] = mapped_column(String(5))
    company_phone: Mapped[str | None] = mapped_column(String(20))
    company_email: Mapped[str | None] = mapped_column(String(320))
    business_type: Mapped[str] = mapped_column(String(128), nullable=False)
    investment_value: Mapped[str | None] = mapped_column(String(32))
    employee_count: Mapped[str] = mapped_column(String(64), nullable=False)
    business_entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    province: Mapped[str | None] = mapped_column(String(128))
    regency_city: Mapped[str | None] = mapped_column(String(128))
    district: Mapped[str | None] = mapped_column(String(128))
    village: Mapped[str | None] = mapped_column(String(128))
    leader_name: Mapped[str | None] = mapped_column(String(255))
    leader_position: Mapped[str | None] = mapped_column(String(128))
    leader_nik: Mapped[str | None] = mapped_column(String(16))
    leader_npwp: Mapped[str | None] = mapped_column(String(32))
    kta_kadin_number: Mapped[str | None] = mapped_column(String(64))
    kta_date: Mapped[dt.date | None] = mapped_column()
    status: Mapped[str] = mapped_column(String(64), nullable=False, default="pending_document_verification")

    user: Mapped[User] = relationship(back_populates="company")
