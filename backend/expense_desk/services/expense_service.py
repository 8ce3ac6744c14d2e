"""Expense lifecycle: create, update, approve, reject, list and export.

Expenses are created PENDING by the acting employee. Only an admin can
move a PENDING expense to APPROVED or REJECTED, and a decided expense
is final: the service answers 409 and the ORM listener on ``Expense``
refuses the flush if anything slips through.

Every stored expense satisfies ``|amount_net + tax_vat - amount_gross|
<= 0.01``. Manual input that does not add up is rejected with 422,
unlike receipt analysis output, which is repaired before it gets here.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from expense_desk.core.config import settings
from expense_desk.core.observability import sentry_breadcrumb
from expense_desk.core.policies import can_view_expense, ensure_admin, ensure_can_edit_expense, scope_expenses
from expense_desk.models.enums import CategorySuggestion, ExpenseSource, ExpenseStatus, RecordStatus
from expense_desk.models.schemas import ExpenseCreate, ExpenseUpdate, ReceiptAnalysis
from expense_desk.models.tables import Category, Expense, File, Profile, ProjectCode, _utcnow
from expense_desk.services.audit_service import record_audit
from expense_desk.services.extraction_service import ReceiptAnalysisError

logger = logging.getLogger(__name__)

AMOUNT_MISMATCH_MESSAGE = "Los importes no cuadran: Neto + IVA debe igualar el Total"
AMOUNT_TOLERANCE = 0.01

EXPORT_COLUMNS = [
    "fecha",
    "empleado",
    "comercio",
    "categoria",
    "proyecto",
    "importe_neto",
    "iva",
    "importe_total",
    "moneda",
    "metodo_pago",
    "estado",
    "notas",
]


def reconcile_amounts(gross: float, vat: Optional[float], net: Optional[float]) -> Tuple[float, float, float]:
    """Return ``(gross, vat, net)`` rounded, deriving net when missing.

    Raises:
        HTTPException: 422 when the three amounts do not add up.
    """
    gross = round(float(gross), 2)
    vat = round(float(vat), 2) if vat is not None else 0.0
    net = round(float(net), 2) if net is not None else round(gross - vat, 2)
    if abs(net + vat - gross) > AMOUNT_TOLERANCE:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=AMOUNT_MISMATCH_MESSAGE)
    return gross, vat, net


@dataclass
class ExpenseFilters:
    status: Optional[ExpenseStatus] = None
    category_id: Optional[int] = None
    project_code_id: Optional[int] = None
    employee_id: Optional[int] = None
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    search: Optional[str] = None

    def apply(self, stmt):
        if self.status is not None:
            stmt = stmt.where(Expense.status == self.status)
        if self.category_id is not None:
            stmt = stmt.where(Expense.category_id == self.category_id)
        if self.project_code_id is not None:
            stmt = stmt.where(Expense.project_code_id == self.project_code_id)
        if self.employee_id is not None:
            stmt = stmt.where(Expense.employee_id == self.employee_id)
        if self.date_from is not None:
            stmt = stmt.where(Expense.expense_date >= self.date_from)
        if self.date_to is not None:
            stmt = stmt.where(Expense.expense_date <= self.date_to)
        if self.search:
            stmt = stmt.where(Expense.vendor.ilike(f"%{self.search.strip()}%"))
        return stmt


# ---------------------------------------------------------------------------
# Reference checks


async def _active_category(db: AsyncSession, category_id: int) -> Category:
    category = await db.get(Category, category_id)
    if category is None or category.status != RecordStatus.ACTIVE:
        raise HTTPException(status_code=422, detail="Category not found or inactive")
    return category


async def _active_project_code(db: AsyncSession, project_code_id: Optional[int]) -> Optional[ProjectCode]:
    if project_code_id is None:
        return None
    project = await db.get(ProjectCode, project_code_id)
    if project is None or project.status != RecordStatus.ACTIVE:
        raise HTTPException(status_code=422, detail="Project code not found or inactive")
    return project


async def _owned_file(db: AsyncSession, file_id: Optional[int], owner: Profile) -> Optional[File]:
    if file_id is None:
        return None
    file_row = await db.get(File, file_id)
    if file_row is None or file_row.uploaded_by != owner.id:
        raise HTTPException(status_code=422, detail="Receipt file not found")
    return file_row


# ---------------------------------------------------------------------------
# Reads


async def get_expense(db: AsyncSession, profile: Profile, expense_id: int) -> Expense:
    """Return a visible expense or raise 404."""
    expense = await db.get(Expense, expense_id)
    if expense is None or not can_view_expense(profile, expense):
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


async def list_expenses(
    db: AsyncSession,
    profile: Profile,
    filters: Optional[ExpenseFilters] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Expense], int]:
    stmt = scope_expenses(select(Expense), profile)
    stmt = (filters or ExpenseFilters()).apply(stmt)
    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    rows = (
        await db.execute(stmt.order_by(Expense.expense_date.desc(), Expense.id.desc()).limit(limit).offset(offset))
    ).scalars().all()
    return list(rows), int(total)


# ---------------------------------------------------------------------------
# Writes


async def create_expense(
    db: AsyncSession,
    actor: Profile,
    payload: ExpenseCreate,
    ip_address: Optional[str] = None,
) -> Expense:
    """Create a PENDING expense owned by ``actor``."""
    gross, vat, net = reconcile_amounts(payload.amount_gross, payload.tax_vat, payload.amount_net)
    await _active_category(db, payload.category_id)
    await _active_project_code(db, payload.project_code_id)
    await _owned_file(db, payload.receipt_file_id, actor)

    expense = Expense(
        employee_id=actor.id,
        category_id=payload.category_id,
        project_code_id=payload.project_code_id,
        vendor=payload.vendor,
        expense_date=payload.expense_date,
        amount_gross=gross,
        tax_vat=vat,
        amount_net=net,
        currency=payload.currency,
        payment_method=payload.payment_method,
        status=ExpenseStatus.PENDING,
        notes=payload.notes or None,
        receipt_file_id=payload.receipt_file_id,
        source=payload.source,
    )
    db.add(expense)
    await db.flush()
    record_audit(
        db,
        actor,
        "expense.create",
        "expense",
        expense.id,
        {"amount_gross": gross, "currency": expense.currency, "source": payload.source.value},
        ip_address,
    )
    await db.commit()
    await db.refresh(expense)
    logger.info("expense created id=%s employee=%s gross=%s", expense.id, actor.id, gross)
    return expense


async def update_expense(
    db: AsyncSession,
    actor: Profile,
    expense_id: int,
    payload: ExpenseUpdate,
    ip_address: Optional[str] = None,
) -> Expense:
    """Apply a partial update to a PENDING expense."""
    expense = await get_expense(db, actor, expense_id)
    ensure_can_edit_expense(actor, expense)
    changes = payload.model_dump(exclude_unset=True)

    if {"amount_gross", "tax_vat", "amount_net"} & changes.keys():
        gross = changes.get("amount_gross") or expense.amount_gross
        vat = changes["tax_vat"] if "tax_vat" in changes else expense.tax_vat
        # A new gross or VAT without an explicit net re-derives the net
        net = changes.get("amount_net")
        gross, vat, net = reconcile_amounts(gross, vat, net)
        changes.update(amount_gross=gross, tax_vat=vat, amount_net=net)
    if changes.get("category_id") is not None:
        await _active_category(db, changes["category_id"])
    if "project_code_id" in changes:
        await _active_project_code(db, changes["project_code_id"])
    if changes.get("currency"):
        changes["currency"] = changes["currency"].strip().upper()

    for field, value in changes.items():
        if field in ("vendor", "category_id", "expense_date", "payment_method", "currency") and value is None:
            continue
        setattr(expense, field, value)
    record_audit(db, actor, "expense.update", "expense", expense.id, {"fields": sorted(changes)}, ip_address)
    await db.commit()
    await db.refresh(expense)
    return expense


async def _pending_for_decision(db: AsyncSession, admin: Profile, expense_id: int) -> Expense:
    ensure_admin(admin)
    expense = await db.get(Expense, expense_id)
    if expense is None:
        raise HTTPException(status_code=404, detail="Expense not found")
    if expense.status != ExpenseStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Expense already {expense.status.value}",
        )
    return expense


async def approve_expense(
    db: AsyncSession,
    admin: Profile,
    expense_id: int,
    ip_address: Optional[str] = None,
) -> Expense:
    expense = await _pending_for_decision(db, admin, expense_id)
    expense.status = ExpenseStatus.APPROVED
    expense.approver_id = admin.id
    expense.approved_at = _utcnow()
    expense.rejection_reason = None
    record_audit(db, admin, "expense.approve", "expense", expense.id, {"amount_gross": expense.amount_gross}, ip_address)
    await db.commit()
    await db.refresh(expense)
    sentry_breadcrumb("expense", "expense approved", data={"expense_id": expense.id})
    logger.info("expense approved id=%s by=%s", expense.id, admin.id)
    return expense


async def reject_expense(
    db: AsyncSession,
    admin: Profile,
    expense_id: int,
    reason: str,
    ip_address: Optional[str] = None,
) -> Expense:
    reason = (reason or "").strip()
    if not reason:
        raise HTTPException(status_code=422, detail="A rejection reason is required")
    expense = await _pending_for_decision(db, admin, expense_id)
    expense.status = ExpenseStatus.REJECTED
    expense.approver_id = admin.id
    expense.approved_at = _utcnow()
    expense.rejection_reason = reason
    record_audit(db, admin, "expense.reject", "expense", expense.id, {"reason": reason}, ip_address)
    await db.commit()
    await db.refresh(expense)
    sentry_breadcrumb("expense", "expense rejected", data={"expense_id": expense.id})
    logger.info("expense rejected id=%s by=%s", expense.id, admin.id)
    return expense


# ---------------------------------------------------------------------------
# Receipt flow


async def resolve_category_suggestion(db: AsyncSession, suggestion: CategorySuggestion | str | None) -> Category:
    """Map a suggested category name to an active category, falling back to Otros."""
    names = []
    if suggestion:
        names.append(suggestion.value if isinstance(suggestion, CategorySuggestion) else str(suggestion))
    names.append(CategorySuggestion.OTROS.value)
    for name in names:
        result = await db.execute(
            select(Category).where(func.lower(Category.name) == name.lower(), Category.status == RecordStatus.ACTIVE)
        )
        category = result.scalars().first()
        if category is not None:
            return category
    raise HTTPException(status_code=422, detail="No active category available for receipt expenses")


async def resolve_project_guess(db: AsyncSession, guess: Optional[str]) -> Optional[ProjectCode]:
    if not guess:
        return None
    result = await db.execute(
        select(ProjectCode).where(ProjectCode.code == guess.strip().upper(), ProjectCode.status == RecordStatus.ACTIVE)
    )
    return result.scalars().first()


async def receipt_expense_payload(db: AsyncSession, analysis: ReceiptAnalysis) -> ExpenseCreate:
    """Build and validate the AI_EXTRACTED expense for ``analysis``, without its receipt file."""
    category = await resolve_category_suggestion(db, analysis.category_suggestion)
    project = await resolve_project_guess(db, analysis.project_code_guess)
    currency = (analysis.currency or "").strip().upper()
    try:
        return ExpenseCreate(
            vendor=analysis.vendor,
            expense_date=dt.date.fromisoformat(analysis.expense_date),
            amount_gross=analysis.amount_gross,
            tax_vat=analysis.tax_vat,
            amount_net=analysis.amount_net,
            currency=currency if len(currency) == 3 else settings.DEFAULT_CURRENCY,
            category_id=category.id,
            project_code_id=project.id if project else None,
            payment_method=analysis.payment_method_guess,
            notes=analysis.notes,
            source=ExpenseSource.AI_EXTRACTED,
        )
    except (TypeError, ValueError) as exc:
        raise ReceiptAnalysisError(f"receipt fields cannot form an expense: {exc}") from exc

# ---------------------------------------------------------------------------
# Export


async def export_rows(db: AsyncSession, profile: Profile, filters: Optional[ExpenseFilters] = None) -> List[Dict[str, Any]]:
    stmt = scope_expenses(select(Expense), profile)
    stmt = (filters or ExpenseFilters()).apply(stmt)
    stmt = stmt.options(
        selectinload(Expense.employee),
        selectinload(Expense.category),
        selectinload(Expense.project_code),
    ).order_by(Expense.expense_date.desc(), Expense.id.desc())
    expenses = (await db.execute(stmt)).scalars().all()
    return [
        {
            "fecha": e.expense_date.isoformat(),
            "empleado": e.employee.name if e.employee else "",
            "comercio": e.vendor,
            "categoria": e.category.name if e.category else "",
            "proyecto": e.project_code.code if e.project_code else "",
            "importe_neto": round(float(e.amount_net), 2),
            "iva": round(float(e.tax_vat or 0), 2),
            "importe_total": round(float(e.amount_gross), 2),
            "moneda": e.currency,
            "metodo_pago": e.payment_method.value,
            "estado": e.status.value,
            "notas": e.notes or "",
        }
        for e in expenses
    ]


def rows_to_csv(rows: List[Dict[str, Any]]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS)
    writer.writeheader()
    for row in rows:
        writer.writerow(row)
    return buf.getvalue()
