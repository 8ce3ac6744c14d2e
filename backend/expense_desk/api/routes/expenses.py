"""Expense routes.

Employees create and edit their own PENDING expenses; admins approve or
reject them. Listing and export are scoped by the row-level policies, so
the same endpoints serve both roles.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, UploadFile, status
from fastapi import File as FormFile
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.api.dependencies import get_db_session, read_validated_upload, request_ip
from expense_desk.core.policies import require_admin
from expense_desk.core.security import get_current_profile
from expense_desk.models.enums import ExpenseStatus
from expense_desk.models.schemas import (
    ExpenseCreate,
    ExpenseListResponse,
    ExpenseRead,
    ExpenseUpdate,
    FileRead,
    ReceiptExpenseResponse,
    RejectRequest,
)
from expense_desk.models.tables import Profile
from expense_desk.services import expense_service
from expense_desk.services.expense_service import ExpenseFilters
from expense_desk.services.extraction_service import ExtractionService, get_extraction_service
from expense_desk.services.rate_limiter import rate_limit
from expense_desk.services.storage_service import StorageService, get_storage_service, store_upload

router = APIRouter(prefix="/expenses", tags=["expenses"])


def _filters(
    status_filter: Optional[ExpenseStatus] = Query(default=None, alias="status"),
    category_id: Optional[int] = None,
    project_code_id: Optional[int] = None,
    employee_id: Optional[int] = None,
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
    search: Optional[str] = Query(default=None, max_length=200),
) -> ExpenseFilters:
    return ExpenseFilters(
        status=status_filter,
        category_id=category_id,
        project_code_id=project_code_id,
        employee_id=employee_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )


@router.get("", response_model=ExpenseListResponse)
async def list_expenses(
    filters: ExpenseFilters = Depends(_filters),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ExpenseListResponse:
    items, total = await expense_service.list_expenses(db, profile, filters, limit, offset)
    return ExpenseListResponse(
        items=[ExpenseRead.model_validate(e) for e in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=ExpenseRead, status_code=status.HTTP_201_CREATED)
async def create_expense(
    payload: ExpenseCreate,
    request: Request,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ExpenseRead:
    expense = await expense_service.create_expense(db, profile, payload, request_ip(request))
    return ExpenseRead.model_validate(expense)


@router.post(
    "/from-receipt",
    response_model=ReceiptExpenseResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("/analyze-receipt"))],
)
async def create_expense_from_receipt(
    request: Request,
    file: UploadFile | None = FormFile(default=None),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
    extraction: ExtractionService = Depends(get_extraction_service),
    storage: StorageService = Depends(get_storage_service),
) -> ReceiptExpenseResponse:
    """Analyse a receipt, store it and create an AI_EXTRACTED PENDING expense."""
    upload = await read_validated_upload(file)
    analysis = await extraction.analyze(upload.data, upload.filename, upload.content_type)
    payload = await expense_service.receipt_expense_payload(db, analysis)
    file_row = await store_upload(db, storage, profile, upload.data, upload.filename, upload.content_type)
    storage_key = file_row.storage_key
    try:
        expense = await expense_service.create_expense(
            db, profile, payload.model_copy(update={"receipt_file_id": file_row.id}), request_ip(request)
        )
    except Exception:
        await db.rollback()
        storage.delete(storage_key)
        raise
    await db.refresh(file_row)
    return ReceiptExpenseResponse(
        expense=ExpenseRead.model_validate(expense),
        analysis=analysis,
        file=FileRead.model_validate(file_row),
    )


@router.get("/export")
async def export_expenses(
    export_format: str = Query(default="csv", alias="format", pattern="^(csv|json)$"),
    filters: ExpenseFilters = Depends(_filters),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    rows = await expense_service.export_rows(db, profile, filters)
    stamp = dt.date.today().isoformat()
    if export_format == "json":
        return JSONResponse(
            rows,
            headers={"Content-Disposition": f'attachment; filename="gastos_{stamp}.json"'},
        )
    return Response(
        content=expense_service.rows_to_csv(rows),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="gastos_{stamp}.csv"'},
    )


@router.get("/{expense_id}", response_model=ExpenseRead)
async def get_expense(
    expense_id: int,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ExpenseRead:
    return ExpenseRead.model_validate(await expense_service.get_expense(db, profile, expense_id))


@router.patch("/{expense_id}", response_model=ExpenseRead)
async def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    request: Request,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> ExpenseRead:
    expense = await expense_service.update_expense(db, profile, expense_id, payload, request_ip(request))
    return ExpenseRead.model_validate(expense)


@router.post("/{expense_id}/approve", response_model=ExpenseRead)
async def approve_expense(
    expense_id: int,
    request: Request,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> ExpenseRead:
    expense = await expense_service.approve_expense(db, admin, expense_id, request_ip(request))
    return ExpenseRead.model_validate(expense)


@router.post("/{expense_id}/reject", response_model=ExpenseRead)
async def reject_expense(
    expense_id: int,
    payload: RejectRequest,
    request: Request,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> ExpenseRead:
    expense = await expense_service.reject_expense(db, admin, expense_id, payload.reason, request_ip(request))
    return ExpenseRead.model_validate(expense)
