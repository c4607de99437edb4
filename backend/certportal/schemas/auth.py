"""Authentication request and response schemas.

Request models accept missing fields so that the endpoints can report every
invalid field at once with their own messages.
"""
from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field


class CsrfTokenData(BaseModel):
    csrf_token: str


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""
    csrf_token: str | None = None


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: str
    name: str
    email: str
    phone: str
    role: str
    status: str
    email_verified_at: dt.datetime | None = None


class CompanySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_name: str
    npwp: str
    nib: str
    status: str


class LoginData(BaseModel):
    token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserSummary
    csrf_token: str


class RegisterRequest(BaseModel):
    """Registration form; field names follow the web client's camelCase."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    email: str = ""
    phone: str = ""
    password: str = ""
    confirm_password: str = Field(default="", alias="confirmPassword")
    company_name: str = Field(default="", alias="companyName")
    npwp: str = ""
    nib: str = ""
    address: str = ""
    city: str = ""
    postal_code: str = Field(default="", alias="postalCode")
    company_phone: str = Field(default="", alias="companyPhone")
    company_email: str = Field(default="", alias="companyEmail")
    business_type: str = Field(default="", alias="businessType")
    investment_value: str | int | float | None = Field(default=None, alias="investmentValue")
    employee_count: str | int | None = Field(default=None, alias="employeeCount")
    business_entity_type: str = Field(default="", alias="businessEntityType")
    province: str = ""
    regency_city: str = Field(default="", alias="regencyCity")
    district: str = ""
    village: str = ""
    leader_name: str = Field(default="", alias="leaderName")
    leader_position: str = Field(default="", alias="leaderPosition")
    leader_nik: str = Field(default="", alias="leaderNik")
    leader_npwp: str = Field(default="", alias="leaderNpwp")
    kta_kadin_number: str = Field(default="", alias="ktaKadinNumber")
    kta_date: str = Field(default="", alias="ktaDate")
    terms_accepted: bool = Field(default=False, alias="termsAccepted")
    csrf_token: str | None = None


class RegisterData(BaseModel):
    user_id: int
    uuid: str
    email: str
    otp_sent: bool
    csrf_token: str


class VerifyOtpRequest(BaseModel):
    email: str = ""
    otp: str = ""
    csrf_token: str | None = None


class VerifyOtpData(BaseModel):
    email: str
    status: str = "verified"
    next_step: str = "document_registration"
    csrf_token: str


class ResendOtpRequest(BaseModel):
    email: str = ""
    csrf_token: str | None = None


class ResendOtpData(BaseModel):
    email: str
    otp_sent: bool
    cooldown_seconds: int
    csrf_token: str


class RefreshRequest(BaseModel):
    refresh_token: str = ""


class RefreshData(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class CheckRegistrationDataRequest(BaseModel):
    type: str = ""
    value: str = ""


class RegistrationMatch(BaseModel):
    id: int
    company_name: str
    npwp: str
    nib: str


class CheckRegistrationData(BaseModel):
    found: bool
    type: str
    value: str
    details: RegistrationMatch | None = None


class ProfileData(BaseModel):
    user: UserSummary
    company: CompanySummary | None = None


class ChangePasswordRequest(BaseModel):
    current_password: str = ""
    new_password: str = ""
    confirm_new_password: str = ""
    csrf_token: str | None = None


class ChangePasswordData(BaseModel):
    csrf_token: str
