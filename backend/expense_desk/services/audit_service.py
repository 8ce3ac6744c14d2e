"""Append-only audit trail.

Services call :func:`record_audit` inside the same session (and so the
same transaction) as the change being audited, which keeps the audit
row and the change atomic. Rows are never updated or deleted; the ORM
listeners on ``AuditLog`` enforce that.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.core.policies import scope_audit_logs
from expense_desk.models.tables import AuditLog, Profile

logger = logging.getLogger(__name__)


def record_audit(
    db: AsyncSession,
    actor: Profile,
    action: str,
    entity: str,
    entity_id: int,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
) -> AuditLog:
    """Stage an audit entry on ``db``; the caller commits."""
    entry = AuditLog(
        actor_user_id=actor.id,
        action=action,
        entity=entity,
        entity_id=entity_id,
        details=details or {},
        ip_address=ip_address[:45] if ip_address else None,
    )
    db.add(entry)
    logger.info("audit action=%s entity=%s:%s actor=%s", action, entity, entity_id, actor.id)
    return entry


async def list_audit_logs(
    db: AsyncSession,
    profile: Profile,
    entity: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[AuditLog], int]:
    stmt = scope_audit_logs(select(AuditLog), profile)
    if entity:
        stmt = stmt.where(AuditLog.entity == entity)
    if entity_id is not None:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    rows = (
        await db.execute(stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).offset(offset))
    ).scalars().all()
    return list(rows), int(total)
