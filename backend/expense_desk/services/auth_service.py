"""Sign-up, sign-in and sign-out.

Error messages deliberately match the ones clients already translate
("User already registered", "Invalid login credentials").
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.core.config import get_admin_emails, settings
from expense_desk.core.security import create_access_token, hash_password, verify_password
from expense_desk.models.enums import AppRole, UserStatus
from expense_desk.models.schemas import ProfileRead, SignInRequest, SignUpRequest, TokenResponse
from expense_desk.models.tables import Profile
from expense_desk.services.audit_service import record_audit

logger = logging.getLogger(__name__)


async def get_profile_by_email(db: AsyncSession, email: str) -> Optional[Profile]:
    result = await db.execute(select(Profile).where(Profile.email == email.strip().lower()))
    return result.scalar_one_or_none()


def _token_response(profile: Profile) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(profile.id),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        profile=ProfileRead.model_validate(profile),
    )


async def sign_up(db: AsyncSession, payload: SignUpRequest, ip_address: Optional[str] = None) -> TokenResponse:
    """Create a profile and return a token for it."""
    email = payload.email.strip().lower()
    if await get_profile_by_email(db, email) is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already registered")

    role = AppRole.ADMIN if email in get_admin_emails() else AppRole.EMPLOYEE
    profile = Profile(
        email=email,
        name=payload.name,
        password_hash=hash_password(payload.password),
        role=role,
        status=UserStatus.ACTIVE,
    )
    db.add(profile)
    try:
        await db.flush()
    except IntegrityError:
        # Concurrent sign-up with the same email
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already registered")
    record_audit(db, profile, "auth.signup", "profile", profile.id, {"role": role.value}, ip_address)
    await db.commit()
    await db.refresh(profile)
    logger.info("profile created id=%s role=%s", profile.id, role.value)
    return _token_response(profile)


async def sign_in(db: AsyncSession, payload: SignInRequest) -> TokenResponse:
    profile = await get_profile_by_email(db, payload.email)
    if profile is None or not verify_password(payload.password, profile.password_hash):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid login credentials")
    if profile.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")
    return _token_response(profile)


async def sign_out(db: AsyncSession, profile: Profile, ip_address: Optional[str] = None) -> None:
    """Record the sign-out; tokens are stateless so nothing is revoked."""
    record_audit(db, profile, "auth.signout", "profile", profile.id, None, ip_address)
    await db.commit()
