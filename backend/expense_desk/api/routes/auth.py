"""Authentication routes: sign-up, sign-in, session and sign-out.

Sign-up and sign-in are guarded by the per-IP rate limiter.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.api.dependencies import get_db_session, request_ip
from expense_desk.core.security import get_current_profile
from expense_desk.models.schemas import ProfileRead, SignInRequest, SignUpRequest, TokenResponse
from expense_desk.models.tables import Profile
from expense_desk.services import auth_service
from expense_desk.services.rate_limiter import rate_limit

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/signup",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("/auth/signup"))],
)
async def signup(
    payload: SignUpRequest,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
) -> TokenResponse:
    return await auth_service.sign_up(db, payload, request_ip(request))


@router.post("/signin", response_model=TokenResponse, dependencies=[Depends(rate_limit("/auth/signin"))])
async def signin(payload: SignInRequest, db: AsyncSession = Depends(get_db_session)) -> TokenResponse:
    return await auth_service.sign_in(db, payload)


@router.get("/session", response_model=ProfileRead)
async def read_session(profile: Profile = Depends(get_current_profile)) -> ProfileRead:
    """Return the profile behind the bearer token."""
    return ProfileRead.model_validate(profile)


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
async def signout(
    request: Request,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    await auth_service.sign_out(db, profile, request_ip(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
