"""Dashboard aggregates.

Both reports are computed from policy-scoped expense rows: an employee
only ever aggregates their own expenses, an admin aggregates everyone's.
The volumes of a small business fit comfortably in memory, so rows are
fetched once and folded in Python.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.core.policies import scope_expenses
from expense_desk.models.enums import AnalyticsPeriod, ExpenseStatus, RecordStatus
from expense_desk.models.schemas import (
    AnalyticsReport,
    BudgetUsage,
    CategoryShare,
    DashboardStats,
    MonthlyPoint,
    RankedTotal,
    StatusShare,
)
from expense_desk.models.tables import Category, Expense, Profile
from expense_desk.utils.helpers import month_bounds, subtract_months

logger = logging.getLogger(__name__)

NO_DATA = "Sin datos"
NO_CATEGORY = "Sin categoría"
NO_NAME = "Sin nombre"
TOP_N = 10


def period_start(period: AnalyticsPeriod, today: dt.date) -> dt.date:
    if period == AnalyticsPeriod.DAYS_30:
        return today - dt.timedelta(days=30)
    if period == AnalyticsPeriod.MONTHS_3:
        return subtract_months(today, 3)
    if period == AnalyticsPeriod.MONTHS_6:
        return subtract_months(today, 6)
    if period == AnalyticsPeriod.YEAR_TO_DATE:
        return today.replace(month=1, day=1)
    return subtract_months(today, 12)


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


async def _scoped_rows(
    db: AsyncSession,
    profile: Profile,
    since: dt.date,
    status: Optional[ExpenseStatus] = None,
) -> List[Tuple]:
    stmt = (
        select(
            Expense.expense_date,
            Expense.amount_gross,
            Expense.status,
            Expense.vendor,
            Category.name,
            Profile.name,
        )
        .select_from(Expense)
        .outerjoin(Category, Expense.category_id == Category.id)
        .outerjoin(Profile, Expense.employee_id == Profile.id)
        .where(Expense.expense_date >= since)
    )
    stmt = scope_expenses(stmt, profile)
    if status is not None:
        stmt = stmt.where(Expense.status == status)
    return list((await db.execute(stmt)).all())


async def dashboard_stats(db: AsyncSession, profile: Profile, today: Optional[dt.date] = None) -> DashboardStats:
    """Year-to-date totals for the dashboard cards."""
    today = today or dt.date.today()
    month_start, _ = month_bounds(today)
    rows = await _scoped_rows(db, profile, today.replace(month=1, day=1))

    approved_total = 0.0
    pending_total = 0.0
    pending_count = 0
    this_month = 0.0
    by_category: Dict[str, float] = defaultdict(float)
    month_by_category: Dict[str, float] = defaultdict(float)
    for expense_date, gross, status, _vendor, category, _employee in rows:
        gross = float(gross or 0)
        if status == ExpenseStatus.APPROVED:
            approved_total += gross
            if category:
                by_category[category] += gross
            if expense_date >= month_start:
                this_month += gross
                if category:
                    month_by_category[category] += gross
        elif status == ExpenseStatus.PENDING:
            pending_total += gross
            pending_count += 1

    top_category = max(by_category.items(), key=lambda kv: kv[1])[0] if by_category else NO_DATA

    categories = (
        await db.execute(select(Category).where(Category.status == RecordStatus.ACTIVE).order_by(Category.name))
    ).scalars().all()
    budget_usage = []
    for category in categories:
        spent = round(month_by_category.get(category.name, 0.0), 2)
        budget = float(category.budget_monthly) if category.budget_monthly is not None else None
        budget_usage.append(
            BudgetUsage(
                category=category.name,
                budget_monthly=budget,
                spent=spent,
                percentage=_pct(spent, budget) if budget else None,
            )
        )

    return DashboardStats(
        total_expenses=round(approved_total, 2),
        pending_expenses=round(pending_total, 2),
        pending_count=pending_count,
        this_month_expenses=round(this_month, 2),
        daily_average=round(this_month / max(today.day, 1), 2),
        top_category=top_category,
        budget_usage=budget_usage,
    )


def _ranked(totals: Dict[str, List[float]], limit: int = TOP_N) -> List[RankedTotal]:
    ranked = sorted(totals.items(), key=lambda kv: kv[1][0], reverse=True)[:limit]
    return [RankedTotal(name=name, amount=round(amount, 2), count=int(count)) for name, (amount, count) in ranked]


async def analytics_report(
    db: AsyncSession,
    profile: Profile,
    period: AnalyticsPeriod = AnalyticsPeriod.MONTHS_12,
    status: Optional[ExpenseStatus] = ExpenseStatus.APPROVED,
    today: Optional[dt.date] = None,
) -> AnalyticsReport:
    """Aggregate the expenses of ``period``; ``status=None`` means all statuses."""
    today = today or dt.date.today()
    rows = await _scoped_rows(db, profile, period_start(period, today), status)

    total_amount = 0.0
    monthly: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0])
    by_category: Dict[str, float] = defaultdict(float)
    vendors: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0])
    employees: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0])
    statuses: Dict[ExpenseStatus, int] = defaultdict(int)

    for expense_date, gross, exp_status, vendor, category, employee in rows:
        gross = float(gross or 0)
        total_amount += gross
        point = monthly[expense_date.strftime("%Y-%m")]
        point[0] += gross
        point[1] += 1
        by_category[category or NO_CATEGORY] += gross
        v = vendors[vendor]
        v[0] += gross
        v[1] += 1
        e = employees[employee or NO_NAME]
        e[0] += gross
        e[1] += 1
        statuses[ExpenseStatus(exp_status)] += 1

    count = len(rows)
    return AnalyticsReport(
        total_expenses=count,
        total_amount=round(total_amount, 2),
        avg_expense_amount=round(total_amount / max(count, 1), 2),
        monthly_trend=[
            MonthlyPoint(month=month, amount=round(amount, 2), count=int(n))
            for month, (amount, n) in sorted(monthly.items())
        ],
        category_breakdown=[
            CategoryShare(category=name, amount=round(amount, 2), percentage=_pct(amount, total_amount))
            for name, amount in sorted(by_category.items(), key=lambda kv: kv[1], reverse=True)
        ],
        top_vendors=_ranked(vendors),
        employee_leaderboard=_ranked(employees) if profile.is_admin else [],
        status_distribution=[
            StatusShare(status=s, count=n, percentage=_pct(n, count))
            for s, n in sorted(statuses.items(), key=lambda kv: kv[1], reverse=True)
        ],
    )
