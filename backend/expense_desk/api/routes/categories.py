"""Category reference data."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.api.dependencies import get_db_session
from expense_desk.core.policies import require_admin, scope_reference_data
from expense_desk.core.security import get_current_profile
from expense_desk.models.schemas import CategoryCreate, CategoryRead, CategoryUpdate
from expense_desk.models.tables import Category, Profile
from expense_desk.services.audit_service import record_audit

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("", response_model=list[CategoryRead])
async def list_categories(
    include_inactive: bool = False,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> list[CategoryRead]:
    stmt = scope_reference_data(select(Category), Category, profile, include_inactive).order_by(Category.name)
    rows = (await db.execute(stmt)).scalars().all()
    return [CategoryRead.model_validate(c) for c in rows]


@router.post("", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> CategoryRead:
    category = Category(name=payload.name, budget_monthly=payload.budget_monthly)
    db.add(category)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Category already exists")
    record_audit(db, admin, "category.create", "category", category.id, {"name": category.name})
    await db.commit()
    await db.refresh(category)
    return CategoryRead.model_validate(category)


@router.patch("/{category_id}", response_model=CategoryRead)
async def update_category(
    category_id: int,
    payload: CategoryUpdate,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> CategoryRead:
    category = await db.get(Category, category_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if field in ("name", "status") and value is None:
            continue
        setattr(category, field, value)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Category already exists")
    record_audit(db, admin, "category.update", "category", category.id, {"fields": sorted(changes)})
    await db.commit()
    await db.refresh(category)
    return CategoryRead.model_validate(category)
