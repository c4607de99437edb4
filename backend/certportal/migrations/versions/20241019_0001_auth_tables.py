"""Users, companies and auth-state tables."""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from certportal.models.user import UserRole, UserStatus

# revision identifiers, used by Alembic.
revision = "20241019_0001"
down_revision = None
branch_labels = None
depends_on = None

_USER_STATUS = sa.Enum(*[member.value for member in UserStatus], name="userstatus")
_USER_ROLE = sa.Enum(*[member.value for member in UserRole], name="userrole")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uuid", sa.String(length=36), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("phone", sa.String(length=20), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("status", _USER_STATUS, nullable=False, server_default=UserStatus.PENDING_VERIFICATION.value),
        sa.Column("role", _USER_ROLE, nullable=False, server_default=UserRole.USER.value),
        sa.Column("email_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("npwp", sa.String(length=32), nullable=False, unique=True),
        sa.Column("nib", sa.String(length=13), nullable=False, unique=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(length=128), nullable=True),
        sa.Column("postal_code", sa.String(length=5), nullable=True),
        sa.Column("company_phone", sa.String(length=20), nullable=True),
        sa.Column("company_email", sa.String(length=320), nullable=True),
        sa.Column("business_type", sa.String(length=128), nullable=False),
        sa.Column("investment_value", sa.String(length=32), nullable=True),
        sa.Column("employee_count", sa.String(length=64), nullable=False),
        sa.Column("business_entity_type", sa.String(length=64), nullable=False),
        sa.Column("province", sa.String(length=128), nullable=True),
        sa.Column("regency_city", sa.String(length=128), nullable=True),
        sa.Column("district", sa.String(length=128), nullable=True),
        sa.Column("village", sa.String(length=128), nullable=True),
        sa.Column("leader_name", sa.String(length=255), nullable=True),
        sa.Column("leader_position", sa.String(length=128), nullable=True),
        sa.Column("leader_nik", sa.String(length=16), nullable=True),
        sa.Column("leader_npwp", sa.String(length=32), nullable=True),
        sa.Column("kta_kadin_number", sa.String(length=64), nullable=True),
        sa.Column("kta_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=64), nullable=False, server_default="pending_document_verification"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_companies_npwp", "companies", ["npwp"])
    op.create_index("ix_companies_nib", "companies", ["nib"])

    op.create_table(
        "token_denylist",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("jti", sa.String(length=64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_token_denylist_expires_at", "token_denylist", ["expires_at"])

    op.create_table(
        "csrf_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_csrf_sessions_expires_at", "csrf_sessions", ["expires_at"])

    op.create_table(
        "rate_limit_counters",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("identifier", sa.String(length=320), nullable=False),
        sa.Column("scope", sa.String(length=64), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("identifier", "scope", name="uq_rate_limit_identifier_scope"),
    )
    op.create_index("ix_rate_limit_counters_last_attempt_at", "rate_limit_counters", ["last_attempt_at"])

    op.create_table(
        "otp_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("code_hash", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_otp_records_expires_at", "otp_records", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_otp_records_expires_at", table_name="otp_records")
    op.drop_table("otp_records")
    op.drop_index("ix_rate_limit_counters_last_attempt_at", table_name="rate_limit_counters")
    op.drop_table("rate_limit_counters")
    op.drop_index("ix_csrf_sessions_expires_at", table_name="csrf_sessions")
    op.drop_table("csrf_sessions")
    op.drop_index("ix_token_denylist_expires_at", table_name="token_denylist")
    op.drop_table("token_denylist")
    op.drop_index("ix_companies_nib", table_name="companies")
    op.drop_index("ix_companies_npwp", table_name="companies")
    op.drop_table("companies")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    _USER_ROLE.drop(op.get_bind(), checkfirst=True)  # type: ignore[no-untyped-call]
    _USER_STATUS.drop(op.get_bind(), checkfirst=True)  # type: ignore[no-untyped-call]
