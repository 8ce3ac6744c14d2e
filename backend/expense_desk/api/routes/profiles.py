"""Profile routes.

Employees can read and edit their own profile (name, department,
region). Admins see every profile and manage roles and status; an admin
cannot deactivate their own account.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.api.dependencies import get_db_session, request_ip
from expense_desk.core.policies import require_admin, scope_profiles
from expense_desk.core.security import get_current_profile
from expense_desk.models.enums import AppRole, UserStatus
from expense_desk.models.schemas import ProfileAdminUpdate, ProfileRead, ProfileSelfUpdate
from expense_desk.models.tables import Profile
from expense_desk.services.audit_service import record_audit

router = APIRouter(prefix="/profiles", tags=["profiles"])


def _apply(profile: Profile, changes: dict) -> None:
    for field, value in changes.items():
        if field == "name" and not value:
            continue
        setattr(profile, field, value)


@router.get("", response_model=list[ProfileRead])
async def list_profiles(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> list[ProfileRead]:
    stmt = scope_profiles(select(Profile), profile).order_by(Profile.name)
    rows = (await db.execute(stmt)).scalars().all()
    return [ProfileRead.model_validate(p) for p in rows]


@router.get("/me", response_model=ProfileRead)
async def read_my_profile(profile: Profile = Depends(get_current_profile)) -> ProfileRead:
    return ProfileRead.model_validate(profile)


@router.patch("/me", response_model=ProfileRead)
async def update_my_profile(
    payload: ProfileSelfUpdate,
    request: Request,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ProfileRead:
    changes = payload.model_dump(exclude_unset=True)
    _apply(profile, changes)
    record_audit(db, profile, "profile.update", "profile", profile.id, {"fields": sorted(changes)}, request_ip(request))
    await db.commit()
    await db.refresh(profile)
    return ProfileRead.model_validate(profile)


@router.patch("/{profile_id}", response_model=ProfileRead)
async def update_profile(
    profile_id: int,
    payload: ProfileAdminUpdate,
    request: Request,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> ProfileRead:
    target = await db.get(Profile, profile_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    changes = payload.model_dump(exclude_unset=True)
    if target.id == admin.id and changes.get("status") == UserStatus.INACTIVE:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own account")
    if target.id == admin.id and changes.get("role") not in (None, AppRole.ADMIN):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot remove your own admin role")
    changes = {k: v for k, v in changes.items() if not (k in ("role", "status") and v is None)}
    _apply(target, changes)
    details = {k: getattr(v, "value", v) for k, v in changes.items()}
    record_audit(db, admin, "profile.admin_update", "profile", target.id, details, request_ip(request))
    await db.commit()
    await db.refresh(target)
    return ProfileRead.model_validate(target)


@router.post("/{profile_id}/toggle-status", response_model=ProfileRead)
async def toggle_profile_status(
    profile_id: int,
    request: Request,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> ProfileRead:
    target = await db.get(Profile, profile_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    if target.id == admin.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot deactivate your own account")
    target.status = UserStatus.INACTIVE if target.status == UserStatus.ACTIVE else UserStatus.ACTIVE
    record_audit(
        db, admin, "profile.toggle_status", "profile", target.id, {"status": target.status.value}, request_ip(request)
    )
    await db.commit()
    await db.refresh(target)
    return ProfileRead.model_validate(target)
