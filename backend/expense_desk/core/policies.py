"""Row-level access policies.

Every read goes through one of the ``scope_*`` helpers, which narrow a
``select`` to the rows the acting profile may see:

- employees see their own expenses, files, audit log entries and profile;
- admins see everything;
- reference data (categories, project codes) is visible to everyone
  while ACTIVE, and admins may ask for inactive rows too.

Write checks (``require_admin``, ``ensure_can_edit_expense``) raise
``HTTPException`` so routes and services can call them directly.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, status
from sqlalchemy.sql import Select

from expense_desk.core.security import get_current_profile
from expense_desk.models.enums import ExpenseStatus, RecordStatus
from expense_desk.models.tables import AuditLog, Expense, File, Profile


def scope_expenses(stmt: Select, profile: Profile) -> Select:
    if profile.is_admin:
        return stmt
    return stmt.where(Expense.employee_id == profile.id)


def scope_files(stmt: Select, profile: Profile) -> Select:
    if profile.is_admin:
        return stmt
    return stmt.where(File.uploaded_by == profile.id)


def scope_audit_logs(stmt: Select, profile: Profile) -> Select:
    if profile.is_admin:
        return stmt
    return stmt.where(AuditLog.actor_user_id == profile.id)


def scope_profiles(stmt: Select, profile: Profile) -> Select:
    if profile.is_admin:
        return stmt
    return stmt.where(Profile.id == profile.id)


def scope_reference_data(stmt: Select, model, profile: Profile, include_inactive: bool = False) -> Select:
    """Limit categories/project codes to ACTIVE rows unless an admin asks otherwise."""
    if include_inactive and profile.is_admin:
        return stmt
    return stmt.where(model.status == RecordStatus.ACTIVE)


def can_view_expense(profile: Profile, expense: Expense) -> bool:
    return profile.is_admin or expense.employee_id == profile.id


def ensure_can_edit_expense(profile: Profile, expense: Expense) -> None:
    """Owners and admins may edit an expense, and only while it is PENDING."""
    if not can_view_expense(profile, expense):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found")
    if expense.status != ExpenseStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Expense is {expense.status.value} and can no longer be modified",
        )


def ensure_admin(profile: Profile) -> None:
    if not profile.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")


async def require_admin(profile: Profile = Depends(get_current_profile)) -> Profile:
    """Dependency resolving the current profile and insisting on the ADMIN role."""
    ensure_admin(profile)
    return profile
