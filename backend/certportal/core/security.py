"""Password hashing and registration field validators."""
from __future__ import annotations

import datetime as dt
import re
from typing import Final, cast

from passlib.context import CryptContext  # type: ignore[import-untyped]

PASSWORD_REGEX: Final[re.Pattern[str]] = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^A-Za-z\d]).{8,}$")
EMAIL_REGEX: Final[re.Pattern[str]] = re.compile(
    r"^(?:[a-zA-Z0-9_'^&+/=?`{|}~-]+(?:\.[a-zA-Z0-9_'^&+/=?`{|}~-]+)*)@"
    r"(?:(?:[a-zA-Z0-9-]+\.)+[a-zA-Z]{2,})$"
)
NPWP_FORMATTED_REGEX: Final[re.Pattern[str]] = re.compile(r"^\d{2}\.\d{3}\.\d{3}\.\d-\d{3}\.\d{3}$")
OTP_REGEX: Final[re.Pattern[str]] = re.compile(r"^\d{6}$")

PASSWORD_POLICY_MESSAGE: Final[str] = (
    "Password must be at least 8 characters long and include an uppercase letter, "
    "a lowercase letter, a digit, and a symbol."
)

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class PasswordValidationError(ValueError):
    """Raised when the provided password fails policy validation."""


def validate_password_strength(password: str) -> None:
    if not PASSWORD_REGEX.match(password):
        raise PasswordValidationError(PASSWORD_POLICY_MESSAGE)


def hash_password(password: str) -> str:
    """Return a bcrypt hash for a password that satisfies the policy."""

    validate_password_strength(password)
    return hash_secret(password)


def hash_secret(value: str) -> str:
    """Hash an arbitrary secret (such as a one-time code) without policy checks."""

    return cast(str, _pwd_context.hash(value))


def verify_password(password: str, password_hash: str) -> bool:
    """Validate a plaintext secret against a bcrypt hash."""

    try:
        return bool(_pwd_context.verify(password, password_hash))
    except ValueError:
        # unrecognised or corrupted hash
        return False


def digits_only(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def is_valid_email(email: str) -> bool:
    return bool(email) and len(email) <= 320 and EMAIL_REGEX.match(email) is not None


def is_valid_phone(phone: str) -> bool:
    """Phone numbers carry 8 to 15 digits; separators are ignored."""

    cleaned = re.sub(r"[\s\-()+.]", "", phone or "")
    return cleaned.isdigit() and 8 <= len(cleaned) <= 15


def is_valid_npwp(npwp: str) -> bool:
    """Accept 15 bare digits or the dotted ``XX.XXX.XXX.X-XXX.XXX`` form."""

    if not npwp:
        return False
    if NPWP_FORMATTED_REGEX.match(npwp):
        return True
    return npwp.isdigit() and len(npwp) == 15


def is_valid_nib(nib: str) -> bool:
    return bool(nib) and nib.isdigit() and len(nib) == 13


def is_valid_postal_code(value: str) -> bool:
    return value.isdigit() and len(value) == 5


def is_valid_nik(value: str) -> bool:
    return value.isdigit() and len(value) == 16


def parse_iso_date(value: str) -> dt.date | None:
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        return None


def is_valid_otp(code: str) -> bool:
    return bool(code) and OTP_REGEX.match(code) is not None
