"""Application configuration management."""
from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_PLACEHOLDER_SECRETS = {"", "CHANGE_ME", "change-me"}


class Settings(BaseSettings):
    """Typed application settings loaded from the environment."""

    db_url: str = Field(default="sqlite+aiosqlite:///./certportal.db", validation_alias="DB_URL")
    jwt_secret: SecretStr = Field(default=SecretStr(""), validation_alias="JWT_SECRET")
    access_token_ttl_seconds: int = Field(default=3600, ge=1, validation_alias="ACCESS_TOKEN_TTL_SECONDS")
    refresh_token_ttl_seconds: int = Field(default=7 * 24 * 3600, ge=1, validation_alias="REFRESH_TOKEN_TTL_SECONDS")
    jwt_leeway_seconds: int = Field(default=0, ge=0, validation_alias="JWT_LEEWAY_SECONDS")
    env: Literal["local", "dev", "prod"] = Field(default="local", validation_alias="ENV")
    version: str | None = Field(default=None, validation_alias="GIT_SHA")
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost", "http://localhost:5173"],
        validation_alias="CORS_ALLOWED_ORIGINS",
    )

    session_cookie_name: str = Field(default="certportal_session", validation_alias="SESSION_COOKIE_NAME")
    session_cookie_secure: bool = Field(default=True, validation_alias="SESSION_COOKIE_SECURE")
    session_cookie_samesite: Literal["lax", "strict", "none"] = Field(
        default="lax", validation_alias="SESSION_COOKIE_SAMESITE"
    )
    session_ttl_seconds: int = Field(default=24 * 3600, ge=60, validation_alias="SESSION_TTL_SECONDS")

    login_max_attempts: int = Field(default=5, ge=1, validation_alias="LOGIN_MAX_ATTEMPTS")
    login_window_seconds: int = Field(default=300, ge=1, validation_alias="LOGIN_WINDOW_SECONDS")
    register_max_attempts: int = Field(default=5, ge=1, validation_alias="REGISTER_MAX_ATTEMPTS")
    register_window_seconds: int = Field(default=300, ge=1, validation_alias="REGISTER_WINDOW_SECONDS")
    otp_verify_ip_max_attempts: int = Field(default=10, ge=1, validation_alias="OTP_VERIFY_IP_MAX_ATTEMPTS")
    otp_verify_email_max_attempts: int = Field(default=5, ge=1, validation_alias="OTP_VERIFY_EMAIL_MAX_ATTEMPTS")
    otp_verify_window_seconds: int = Field(default=300, ge=1, validation_alias="OTP_VERIFY_WINDOW_SECONDS")
    otp_resend_max_attempts: int = Field(default=3, ge=1, validation_alias="OTP_RESEND_MAX_ATTEMPTS")
    otp_resend_window_seconds: int = Field(default=900, ge=1, validation_alias="OTP_RESEND_WINDOW_SECONDS")

    otp_ttl_seconds: int = Field(default=600, ge=1, validation_alias="OTP_TTL_SECONDS")
    otp_cooldown_seconds: int = Field(default=60, ge=0, validation_alias="OTP_COOLDOWN_SECONDS")

    mail_host: str = Field(default="localhost", validation_alias="MAIL_HOST")
    mail_port: int = Field(default=587, validation_alias="MAIL_PORT")
    mail_username: str = Field(default="", validation_alias="MAIL_USERNAME")
    mail_password: SecretStr = Field(default=SecretStr(""), validation_alias="MAIL_PASSWORD")
    mail_encryption: Literal["tls", "ssl"] = Field(default="tls", validation_alias="MAIL_ENCRYPTION")
    mail_from_address: str = Field(default="no-reply@bski-portal.local", validation_alias="MAIL_FROM_ADDRESS")
    mail_from_name: str = Field(default="BSKI Portal", validation_alias="MAIL_FROM_NAME")

    trust_forwarded_for: bool = Field(default=False, validation_alias="TRUST_FORWARDED_FOR")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_cors(cls, value: object) -> list[str]:
        if not isinstance(value, str):
            return value  # type: ignore[return-value]
        if value.lstrip().startswith("["):
            return json.loads(value)
        origins = [item.strip() for item in value.split(",") if item.strip()]
        return origins or ["http://localhost", "http://localhost:5173"]

    @property
    def is_local(self) -> bool:
        return self.env == "local"

    def require_production_secrets(self) -> None:
        if self.is_local:
            return
        if self.jwt_secret.get_secret_value() in _PLACEHOLDER_SECRETS:
            raise ValueError("JWT_SECRET must be set to a secure value in non-local environments.")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    settings = Settings()
    settings.require_production_secrets()
    return settings
