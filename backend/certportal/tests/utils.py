from __future__ import annotations

import zlib
from typing import Any

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from certportal.core.security import hash_password
from certportal.models.user import User, UserRole, UserStatus

DEFAULT_PASSWORD = "Str0ng!Pass"


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    password: str = DEFAULT_PASSWORD,
    status: UserStatus = UserStatus.ACTIVE,
    phone: str | None = None,
    role: UserRole = UserRole.USER,
) -> User:
    user = User(
        name="Test User",
        email=email,
        phone=phone or f"08{zlib.crc32(email.encode()) % 10**10:010d}",
        password_hash=hash_password(password),
        status=status,
        role=role,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def fetch_csrf(client: AsyncClient) -> str:
    response = await client.get("/api/v1/auth/csrf-token")
    assert response.status_code == 200
    return response.json()["data"]["csrf_token"]


def registration_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": "Budi Santoso",
        "email": "budi@example.com",
        "phone": "081234567890",
        "password": DEFAULT_PASSWORD,
        "confirmPassword": DEFAULT_PASSWORD,
        "companyName": "PT Maju Jaya",
        "npwp": "01.234.567.8-901.234",
        "nib": "1234567890123",
        "address": "Jl. Merdeka No. 1",
        "city": "Jakarta",
        "postalCode": "10110",
        "companyPhone": "0215551234",
        "companyEmail": "info@majujaya.co.id",
        "businessType": "Konstruksi",
        "investmentValue": "500000000",
        "employeeCount": "25",
        "businessEntityType": "PT",
        "termsAccepted": True,
    }
    payload.update(overrides)
    return payload


async def login(client: AsyncClient, email: str, password: str = DEFAULT_PASSWORD) -> dict[str, Any]:
    csrf = await fetch_csrf(client)
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
        headers={"X-CSRF-Token": csrf},
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]
