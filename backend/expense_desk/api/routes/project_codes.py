"""Project code reference data. Codes are stored upper-case."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.api.dependencies import get_db_session
from expense_desk.core.policies import require_admin, scope_reference_data
from expense_desk.core.security import get_current_profile
from expense_desk.models.schemas import ProjectCodeCreate, ProjectCodeRead, ProjectCodeUpdate
from expense_desk.models.tables import Profile, ProjectCode
from expense_desk.services.audit_service import record_audit

router = APIRouter(prefix="/project-codes", tags=["project-codes"])


@router.get("", response_model=list[ProjectCodeRead])
async def list_project_codes(
    include_inactive: bool = False,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> list[ProjectCodeRead]:
    stmt = scope_reference_data(select(ProjectCode), ProjectCode, profile, include_inactive)
    rows = (await db.execute(stmt.order_by(ProjectCode.code))).scalars().all()
    return [ProjectCodeRead.model_validate(p) for p in rows]


@router.post("", response_model=ProjectCodeRead, status_code=status.HTTP_201_CREATED)
async def create_project_code(
    payload: ProjectCodeCreate,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> ProjectCodeRead:
    project = ProjectCode(code=payload.code, name=payload.name)
    db.add(project)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Project code already exists")
    record_audit(db, admin, "project_code.create", "project_code", project.id, {"code": project.code})
    await db.commit()
    await db.refresh(project)
    return ProjectCodeRead.model_validate(project)


@router.patch("/{project_code_id}", response_model=ProjectCodeRead)
async def update_project_code(
    project_code_id: int,
    payload: ProjectCodeUpdate,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> ProjectCodeRead:
    project = await db.get(ProjectCode, project_code_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project code not found")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(project, field, value)
    record_audit(db, admin, "project_code.update", "project_code", project.id, {"fields": sorted(changes)})
    await db.commit()
    await db.refresh(project)
    return ProjectCodeRead.model_validate(project)
