"""Authentication utilities: password hashing and bearer tokens.

Passwords are hashed with bcrypt. Access tokens are HS256 JWTs signed
with ``SECRET_KEY`` whose ``sub`` claim carries the profile id; they
are stateless, so signing out means the client discards the token.

``get_current_profile`` is the FastAPI dependency every authenticated
route uses. It resolves the profile from the ``Authorization: Bearer``
header and refuses unknown or inactive profiles.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.core.config import settings
from expense_desk.core.database import get_db
from expense_desk.models.enums import UserStatus
from expense_desk.models.tables import Profile

logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(profile_id: int, expires_minutes: Optional[int] = None) -> str:
    """Issue a signed access token for ``profile_id``."""
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    now = dt.datetime.now(dt.timezone.utc)
    payload: Dict[str, Any] = {
        "sub": str(profile_id),
        "iat": int(now.timestamp()),
        "exp": int((now + dt.timedelta(minutes=minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify an access token.

    Raises:
        HTTPException: 401 if the token is malformed, expired or unsigned.
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def get_current_profile(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Resolve the authenticated profile for the current request."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    sub = payload.get("sub")
    try:
        profile_id = int(sub)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token: no sub claim")
    profile = await db.get(Profile, profile_id)
    if profile is None:
        raise HTTPException(status_code=401, detail="Profile not found")
    if profile.status != UserStatus.ACTIVE:
        logger.info("rejected token for inactive profile id=%s", profile_id)
        raise HTTPException(status_code=403, detail="User account is inactive")
    return profile
