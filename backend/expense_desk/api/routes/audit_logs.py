"""Read-only access to the audit trail."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.api.dependencies import get_db_session
from expense_desk.core.security import get_current_profile
from expense_desk.models.schemas import AuditLogRead
from expense_desk.models.tables import Profile
from expense_desk.services.audit_service import list_audit_logs

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


@router.get("", response_model=list[AuditLogRead])
async def get_audit_logs(
    response: Response,
    entity: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> list[AuditLogRead]:
    rows, total = await list_audit_logs(db, profile, entity, entity_id, action, limit, offset)
    response.headers["X-Total-Count"] = str(total)
    return [AuditLogRead.model_validate(r) for r in rows]
