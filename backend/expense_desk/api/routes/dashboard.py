"""Dashboard aggregates for the home cards and the analytics page."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.api.dependencies import get_db_session
from expense_desk.core.security import get_current_profile
from expense_desk.models.enums import AnalyticsPeriod, ExpenseStatus
from expense_desk.models.schemas import AnalyticsReport, DashboardStats
from expense_desk.models.tables import Profile
from expense_desk.services import analytics_service

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=DashboardStats)
async def get_stats(
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> DashboardStats:
    return await analytics_service.dashboard_stats(db, profile)


@router.get("/analytics", response_model=AnalyticsReport)
async def get_analytics(
    period: AnalyticsPeriod = AnalyticsPeriod.MONTHS_12,
    status_filter: str = Query(default=ExpenseStatus.APPROVED.value, alias="status", pattern="^(ALL|PENDING|APPROVED|REJECTED)$"),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> AnalyticsReport:
    status = None if status_filter == "ALL" else ExpenseStatus(status_filter)
    return await analytics_service.analytics_report(db, profile, period, status)
