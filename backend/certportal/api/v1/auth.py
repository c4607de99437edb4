"""Authentication endpoints."""
from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Request, Response, status
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from certportal.core import clock, jwt, rate_limiter
from certportal.core.config import get_settings
from certportal.core.denylist import TokenDenylistStore
from certportal.core.dependencies import (
    AuthClaims,
    CsrfGuardDep,
    CsrfSessionId,
    DBSession,
    clear_session_cookie,
    client_ip,
    ensure_session_id,
    extract_bearer_token,
    session_id_from,
)
from certportal.core.errors import (
    Conflict,
    DeliveryError,
    Forbidden,
    NotFound,
    PortalError,
    RateLimited,
    TokenRevoked,
    Unauthorized,
    ValidationError,
)
from certportal.core.logging import mask_email, record_validation_error, security_event
from certportal.core.metrics import record_auth_login
from certportal.core.otp import OtpManager, normalize_email
from certportal.core.rate_limiter import AttemptLimiter, policy_for
from certportal.core.security import (
    PASSWORD_POLICY_MESSAGE,
    PasswordValidationError,
    digits_only,
    hash_password,
    is_valid_email,
    is_valid_nib,
    is_valid_nik,
    is_valid_npwp,
    is_valid_otp,
    is_valid_phone,
    is_valid_postal_code,
    parse_iso_date,
    validate_password_strength,
    verify_password,
)
from certportal.models.user import Company, User, UserStatus
from certportal.schemas import auth as auth_schema
from certportal.schemas.common import ApiResponse, success
from certportal.services.mailer import OtpMailer, get_otp_mailer

router = APIRouter(prefix="/auth")

MailerDep = Annotated[OtpMailer, Depends(get_otp_mailer)]

# Accounts in these states may sign in and refresh tokens.
_SIGN_IN_STATUSES = frozenset(
    {
        UserStatus.PENDING_DOCUMENT_VERIFICATION,
        UserStatus.PENDING_ADMIN_APPROVAL,
        UserStatus.ACTIVE,
        UserStatus.VERIFIED,
    }
)


def _user_summary(user: User) -> auth_schema.UserSummary:
    return auth_schema.UserSummary(
        id=user.id,
        uuid=user.uuid,
        name=user.name,
        email=user.email,
        phone=user.phone,
        role=user.role.value,
        status=user.status.value,
        email_verified_at=user.email_verified_at,
    )


async def _user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def _user_from_claims(session: AsyncSession, claims: jwt.TokenPayload) -> User | None:
    user_id = claims.get("user_id")
    if not isinstance(user_id, int):
        raise Unauthorized("Invalid token payload.", code="invalid_token")
    return await session.get(User, user_id)


def _raise_if_invalid(request: Request, errors: dict[str, str]) -> None:
    if errors:
        record_validation_error(request, "validation_error", {"fields": sorted(errors)})
        raise ValidationError("Please correct the highlighted fields.", details={"fields": errors})


@router.get("/csrf-token", response_model=ApiResponse[auth_schema.CsrfTokenData])
async def csrf_token(
    request: Request,
    response: Response,
    session: DBSession,
    guard: CsrfGuardDep,
) -> ApiResponse[auth_schema.CsrfTokenData]:
    """Start (or resume) a browser session and hand out its CSRF token."""

    session_id = ensure_session_id(request, response)
    token = await guard.issue_token(session_id)
    await session.commit()
    return success(auth_schema.CsrfTokenData(csrf_token=token))


@router.post("/login", response_model=ApiResponse[auth_schema.LoginData])
async def login(
    payload: auth_schema.LoginRequest,
    request: Request,
    session: DBSession,
    csrf_session_id: CsrfSessionId,
    guard: CsrfGuardDep,
) -> ApiResponse[auth_schema.LoginData]:
    """Authenticate with email and password."""

    settings = get_settings()
    ip = client_ip(request)
    limiter = AttemptLimiter(session)
    policy = policy_for(rate_limiter.LOGIN)
    await limiter.enforce(ip, policy)

    email = normalize_email(payload.email)
    errors: dict[str, str] = {}
    if not email:
        errors["email"] = "Email is required."
    elif not is_valid_email(email):
        errors["email"] = "Email format is invalid."
    if not payload.password:
        errors["password"] = "Password is required."
    _raise_if_invalid(request, errors)

    user = await _user_by_email(session, email)
    if user is None or not verify_password(payload.password, user.password_hash):
        await limiter.register_failure(ip, policy.scope, policy.window_seconds)
        await session.commit()
        record_auth_login("failure")
        security_event("login_failed", email=email, ip=ip)
        raise Unauthorized("Invalid email or password.", code="invalid_credentials")

    if user.status is UserStatus.PENDING_VERIFICATION:
        record_auth_login("unverified")
        raise Forbidden(
            "Please verify your email before signing in.",
            code="email_not_verified",
            details={"email": user.email, "next_step": "verify_otp"},
        )
    if user.status is UserStatus.SUSPENDED:
        record_auth_login("suspended")
        raise Forbidden("This account has been suspended.", code="account_suspended")

    await limiter.clear(ip, policy.scope)
    access_token = jwt.create_access_token(user)
    refresh_token = jwt.create_refresh_token(user)
    next_csrf = await guard.issue_token(csrf_session_id)
    await session.commit()

    request.state.user_id = user.id
    record_auth_login("success")
    logger.bind(event="login_succeeded", user_id=user.id).info("login_succeeded")
    return success(
        auth_schema.LoginData(
            token=access_token,
            refresh_token=refresh_token,
            expires_in=settings.access_token_ttl_seconds,
            user=_user_summary(user),
            csrf_token=next_csrf,
        ),
        "Login successful.",
    )


@router.post("/logout", response_model=ApiResponse[None])
async def logout(
    request: Request,
    response: Response,
    session: DBSession,
    guard: CsrfGuardDep,
    payload: Annotated[auth_schema.LogoutRequest | None, Body()] = None,
) -> ApiResponse[None]:
    """Revoke the presented tokens and end the session. Always succeeds."""

    store = TokenDenylistStore(session)
    tokens = [extract_bearer_token(request)]
    if payload is not None:
        tokens.append(payload.refresh_token)

    for token in tokens:
        if not token:
            continue
        try:
            await store.deny(token)
        except Unauthorized as exc:
            logger.bind(event="logout", reason=exc.code).info("logout_token_not_revocable")

    session_id = session_id_from(request)
    if session_id:
        await guard.end_session(session_id)
    await session.commit()
    clear_session_cookie(response)
    return success(None, "Logged out.")


def _validate_registration(payload: auth_schema.RegisterRequest) -> dict[str, str]:
    errors: dict[str, str] = {}
    name = payload.name.strip()
    if not name:
        errors["name"] = "Full name is required."
    elif not 2 <= len(name) <= 255:
        errors["name"] = "Full name must be between 2 and 255 characters."

    email = normalize_email(payload.email)
    if not email:
        errors["email"] = "Email is required."
    elif not is_valid_email(email):
        errors["email"] = "Email format is invalid."

    if not payload.phone.strip():
        errors["phone"] = "Phone number is required."
    elif not is_valid_phone(payload.phone):
        errors["phone"] = "Phone number must contain 8 to 15 digits."

    if not payload.password:
        errors["password"] = "Password is required."
    else:
        try:
            validate_password_strength(payload.password)
        except PasswordValidationError:
            errors["password"] = PASSWORD_POLICY_MESSAGE
    if payload.password != payload.confirm_password:
        errors["confirmPassword"] = "Password confirmation does not match."

    company_name = payload.company_name.strip()
    if not company_name:
        errors["companyName"] = "Company name is required."
    elif len(company_name) < 2:
        errors["companyName"] = "Company name must be at least 2 characters."

    if not payload.npwp.strip():
        errors["npwp"] = "NPWP is required."
    elif not is_valid_npwp(payload.npwp.strip()):
        errors["npwp"] = "NPWP must contain 15 digits."

    if not payload.nib.strip():
        errors["nib"] = "NIB is required."
    elif not is_valid_nib(payload.nib.strip()):
        errors["nib"] = "NIB must contain 13 digits."

    if payload.postal_code and not is_valid_postal_code(payload.postal_code.strip()):
        errors["postalCode"] = "Postal code must be 5 digits."
    if payload.company_phone and not is_valid_phone(payload.company_phone):
        errors["companyPhone"] = "Company phone number is invalid."
    if payload.company_email and not is_valid_email(normalize_email(payload.company_email)):
        errors["companyEmail"] = "Company email format is invalid."
    if not payload.business_type.strip():
        errors["businessType"] = "Business type is required."
    if payload.investment_value not in (None, "") and not str(payload.investment_value).replace(".", "", 1).isdigit():
        errors["investmentValue"] = "Investment value must be numeric."
    if payload.employee_count in (None, ""):
        errors["employeeCount"] = "Employee count is required."
    if not payload.business_entity_type.strip():
        errors["businessEntityType"] = "Business entity type is required."
    if payload.leader_nik and not is_valid_nik(payload.leader_nik.strip()):
        errors["leaderNik"] = "NIK must be 16 digits."
    if payload.leader_npwp and not is_valid_npwp(payload.leader_npwp.strip()):
        errors["leaderNpwp"] = "Leader NPWP must contain 15 digits."
    if payload.kta_date and parse_iso_date(payload.kta_date.strip()) is None:
        errors["ktaDate"] = "KTA date must use the YYYY-MM-DD format."
    if payload.terms_accepted is not True:
        errors["termsAccepted"] = "You must accept the terms and conditions."
    return errors


async def _ensure_unique_registration(session: AsyncSession, email: str, phone: str, npwp: str, nib: str) -> None:
    checks = (
        (select(User.id).where(User.email == email), "email_taken", "Email is already registered."),
        (select(User.id).where(User.phone == phone), "phone_taken", "Phone number is already registered."),
        (select(Company.id).where(Company.npwp == npwp), "npwp_taken", "NPWP is already registered."),
        (select(Company.id).where(Company.nib == nib), "nib_taken", "NIB is already registered."),
    )
    for stmt, code, message in checks:
        if (await session.execute(stmt)).first() is not None:
            raise Conflict(message, code=code)


def _optional(value: str) -> str | None:
    cleaned = value.strip()
    return cleaned or None


@router.post(
    "/register",
    response_model=ApiResponse[auth_schema.RegisterData],
    status_code=status.HTTP_201_CREATED,
)
async def register(
    payload: auth_schema.RegisterRequest,
    request: Request,
    session: DBSession,
    csrf_session_id: CsrfSessionId,
    guard: CsrfGuardDep,
    mailer: MailerDep,
) -> ApiResponse[auth_schema.RegisterData]:
    """Create a pending account with its company and email a verification code."""

    ip = client_ip(request)
    limiter = AttemptLimiter(session)
    policy = policy_for(rate_limiter.REGISTER)
    await limiter.enforce(ip, policy)
    # every registration attempt counts towards the per-IP limit
    await limiter.register_failure(ip, policy.scope, policy.window_seconds)
    await session.commit()

    _raise_if_invalid(request, _validate_registration(payload))

    email = normalize_email(payload.email)
    phone = payload.phone.strip()
    npwp = payload.npwp.strip()
    nib = payload.nib.strip()
    await _ensure_unique_registration(session, email, phone, npwp, nib)

    user = User(
        name=payload.name.strip(),
        email=email,
        phone=phone,
        password_hash=hash_password(payload.password),
        status=UserStatus.PENDING_VERIFICATION,
    )
    user.company = Company(
        company_name=payload.company_name.strip(),
        npwp=npwp,
        nib=nib,
        address=_optional(payload.address),
        city=_optional(payload.city),
        postal_code=_optional(payload.postal_code),
        company_phone=_optional(payload.company_phone),
        company_email=_optional(normalize_email(payload.company_email)),
        business_type=payload.business_type.strip(),
        investment_value=None if payload.investment_value in (None, "") else str(payload.investment_value),
        employee_count=str(payload.employee_count).strip(),
        business_entity_type=payload.business_entity_type.strip(),
        province=_optional(payload.province),
        regency_city=_optional(payload.regency_city),
        district=_optional(payload.district),
        village=_optional(payload.village),
        leader_name=_optional(payload.leader_name),
        leader_position=_optional(payload.leader_position),
        leader_nik=_optional(payload.leader_nik),
        leader_npwp=_optional(payload.leader_npwp),
        kta_kadin_number=_optional(payload.kta_kadin_number),
        kta_date=parse_iso_date(payload.kta_date.strip()) if payload.kta_date else None,
        status=UserStatus.PENDING_DOCUMENT_VERIFICATION.value,
    )
    session.add(user)
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict("Registration data is already in use.", code="duplicate_registration") from exc

    otp = OtpManager(session, mailer)
    code = await otp.generate_otp(email)
    try:
        await otp.send_otp(email, code, user.name)
    except DeliveryError:
        await session.rollback()
        security_event("registration_rolled_back", email=email, reason="delivery_failed")
        raise

    next_csrf = await guard.issue_token(csrf_session_id)
    await session.commit()
    logger.bind(event="user_registered", user_id=user.id, email=mask_email(email)).info("user_registered")
    return success(
        auth_schema.RegisterData(
            user_id=user.id,
            uuid=user.uuid,
            email=email,
            otp_sent=True,
            csrf_token=next_csrf,
        ),
        "Registration successful. A verification code has been sent to your email.",
    )


@router.post("/verify-otp", response_model=ApiResponse[auth_schema.VerifyOtpData])
async def verify_otp(
    payload: auth_schema.VerifyOtpRequest,
    request: Request,
    session: DBSession,
    csrf_session_id: CsrfSessionId,
    guard: CsrfGuardDep,
) -> ApiResponse[auth_schema.VerifyOtpData]:
    """Confirm email ownership and move the account to document verification."""

    ip = client_ip(request)
    email = normalize_email(payload.email)
    limiter = AttemptLimiter(session)
    ip_policy = policy_for(rate_limiter.OTP_VERIFY_IP)
    email_policy = policy_for(rate_limiter.OTP_VERIFY_EMAIL)
    await limiter.enforce(ip, ip_policy)
    if email:
        await limiter.enforce(email, email_policy)

    errors: dict[str, str] = {}
    if not is_valid_email(email):
        errors["email"] = "A valid email is required."
    if not is_valid_otp(payload.otp.strip()):
        errors["otp"] = "Verification code must be 6 digits."
    _raise_if_invalid(request, errors)

    user = await _user_by_email(session, email)
    if user is None:
        raise NotFound("No account is registered with this email.", code="user_not_found")
    if user.status is not UserStatus.PENDING_VERIFICATION:
        raise Forbidden("This account is not awaiting email verification.", code="invalid_status")

    try:
        await OtpManager(session).verify_otp(email, payload.otp.strip())
    except PortalError as exc:
        await limiter.register_failure(ip, ip_policy.scope, ip_policy.window_seconds)
        await limiter.register_failure(email, email_policy.scope, email_policy.window_seconds)
        await session.commit()
        security_event("otp_verification_failed", email=email, ip=ip, reason=exc.code)
        raise

    await limiter.clear(ip, ip_policy.scope)
    await limiter.clear(email, email_policy.scope)
    user.status = UserStatus.PENDING_DOCUMENT_VERIFICATION
    user.email_verified_at = clock.utcnow()
    next_csrf = await guard.issue_token(csrf_session_id)
    await session.commit()
    return success(
        auth_schema.VerifyOtpData(email=email, csrf_token=next_csrf),
        "Email verified. Continue with document registration.",
    )


@router.post("/resend-otp", response_model=ApiResponse[auth_schema.ResendOtpData])
async def resend_otp(
    payload: auth_schema.ResendOtpRequest,
    request: Request,
    session: DBSession,
    csrf_session_id: CsrfSessionId,
    guard: CsrfGuardDep,
    mailer: MailerDep,
) -> ApiResponse[auth_schema.ResendOtpData]:
    """Send a fresh verification code once the resend cooldown has passed."""

    email = normalize_email(payload.email)
    _raise_if_invalid(request, {} if is_valid_email(email) else {"email": "A valid email is required."})

    otp = OtpManager(session, mailer)
    cooldown = await otp.get_cooldown(email)
    if cooldown > 0:
        raise RateLimited(
            f"Please wait {cooldown} seconds before requesting a new code.",
            retry_after=cooldown,
            code="otp_cooldown",
            details={"cooldown_seconds": cooldown, "wait_time": cooldown},
        )

    limiter = AttemptLimiter(session)
    policy = policy_for(rate_limiter.OTP_RESEND)
    await limiter.enforce(email, policy)

    user = await _user_by_email(session, email)
    if user is None:
        raise NotFound("No account is registered with this email.", code="user_not_found")
    if user.status is not UserStatus.PENDING_VERIFICATION:
        raise Forbidden("This account is not awaiting email verification.", code="invalid_status")

    await limiter.register_failure(email, policy.scope, policy.window_seconds)
    code = await otp.generate_otp(email)
    try:
        await otp.send_otp(email, code, user.name)
    except DeliveryError:
        await session.rollback()
        raise

    next_csrf = await guard.issue_token(csrf_session_id)
    await session.commit()
    return success(
        auth_schema.ResendOtpData(
            email=email,
            otp_sent=True,
            cooldown_seconds=await otp.get_cooldown(email),
            csrf_token=next_csrf,
        ),
        "A new verification code has been sent.",
    )


@router.post("/refresh-token", response_model=ApiResponse[auth_schema.RefreshData])
async def refresh_token(
    payload: auth_schema.RefreshRequest,
    session: DBSession,
) -> ApiResponse[auth_schema.RefreshData]:
    """Exchange a refresh token for a new access token."""

    token = payload.refresh_token.strip()
    if not token:
        raise ValidationError("Refresh token is required.", details={"fields": {"refresh_token": "Required."}})

    claims = jwt.decode(token)
    if claims.get("type") != jwt.TokenType.REFRESH.value:
        raise Unauthorized("Refresh token required.", code="invalid_token")
    jti = claims.get("jti")
    if not jti or await TokenDenylistStore(session).is_denied(jti):
        raise TokenRevoked()

    user = await _user_from_claims(session, claims)
    if user is None or user.email != claims.get("email"):
        raise Unauthorized("Account no longer exists.", code="user_not_found")
    if user.status not in _SIGN_IN_STATUSES:
        raise Forbidden("This account is not allowed to refresh tokens.", code="account_not_active")

    settings = get_settings()
    return success(
        auth_schema.RefreshData(
            access_token=jwt.create_access_token(user),
            expires_in=settings.access_token_ttl_seconds,
        ),
        "Token refreshed.",
    )


@router.get("/me", response_model=ApiResponse[auth_schema.ProfileData])
async def me(claims: AuthClaims, session: DBSession) -> ApiResponse[auth_schema.ProfileData]:
    """Return the signed-in user and a summary of their company."""

    user = await _user_from_claims(session, claims)
    if user is None:
        raise NotFound("Account no longer exists.", code="user_not_found")
    company = None
    if user.company is not None:
        company = auth_schema.CompanySummary.model_validate(user.company)
    return success(auth_schema.ProfileData(user=_user_summary(user), company=company))


@router.post("/change-password", response_model=ApiResponse[auth_schema.ChangePasswordData])
async def change_password(
    payload: auth_schema.ChangePasswordRequest,
    request: Request,
    claims: AuthClaims,
    session: DBSession,
    csrf_session_id: CsrfSessionId,
    guard: CsrfGuardDep,
) -> ApiResponse[auth_schema.ChangePasswordData]:
    errors: dict[str, str] = {}
    if not payload.current_password:
        errors["current_password"] = "Current password is required."
    if not payload.new_password:
        errors["new_password"] = "New password is required."
    else:
        try:
            validate_password_strength(payload.new_password)
        except PasswordValidationError:
            errors["new_password"] = PASSWORD_POLICY_MESSAGE
    if payload.new_password != payload.confirm_new_password:
        errors["confirm_new_password"] = "Password confirmation does not match."
    _raise_if_invalid(request, errors)

    user = await _user_from_claims(session, claims)
    if user is None:
        raise NotFound("Account no longer exists.", code="user_not_found")
    if not verify_password(payload.current_password, user.password_hash):
        security_event("change_password_failed", user_id=user.id)
        raise ValidationError("Current password is incorrect.", code="invalid_current_password")
    if verify_password(payload.new_password, user.password_hash):
        raise ValidationError("New password must differ from the current one.", code="password_unchanged")

    user.password_hash = hash_password(payload.new_password)
    next_csrf = await guard.issue_token(csrf_session_id)
    await session.commit()
    return success(auth_schema.ChangePasswordData(csrf_token=next_csrf), "Password changed.")


@router.post("/check-registration-data", response_model=ApiResponse[auth_schema.CheckRegistrationData])
async def check_registration_data(
    payload: auth_schema.CheckRegistrationDataRequest,
    session: DBSession,
) -> ApiResponse[auth_schema.CheckRegistrationData]:
    """Tell the registration form whether an NPWP or NIB is already on file."""

    kind = payload.type.strip().lower()
    if kind not in {"npwp", "nib"}:
        raise ValidationError("Type must be either 'npwp' or 'nib'.", code="invalid_type")
    value = digits_only(payload.value) if kind == "nib" else payload.value.strip()
    if not value:
        raise ValidationError("Value is required.", details={"fields": {"value": "Required."}})

    column = Company.nib if kind == "nib" else Company.npwp
    company = (await session.execute(select(Company).where(column == value))).scalar_one_or_none()
    details = None
    if company is not None:
        details = auth_schema.RegistrationMatch(
            id=company.id,
            company_name=company.company_name,
            npwp=company.npwp,
            nib=company.nib,
        )
    return success(
        auth_schema.CheckRegistrationData(found=company is not None, type=kind, value=value, details=details),
        "Data found." if company is not None else "Data not found.",
    )
