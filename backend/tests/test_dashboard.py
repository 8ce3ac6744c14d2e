from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy import select

from conftest import auth_headers
from expense_desk.models.enums import AnalyticsPeriod, ExpenseStatus, PaymentMethod
from expense_desk.models.tables import Category, Expense
from expense_desk.services.analytics_service import NO_DATA, analytics_report, dashboard_stats, period_start

TODAY = dt.date(2024, 6, 15)


@pytest.fixture
async def ledger(db_session, employee, other_employee):
    cats = {c.name: c.id for c in (await db_session.execute(select(Category))).scalars()}

    def add(owner, category, day, gross, status):
        db_session.add(
            Expense(
                employee_id=owner.id,
                category_id=cats[category],
                vendor=f"{category} SL",
                expense_date=day,
                amount_gross=gross,
                tax_vat=0,
                amount_net=gross,
                currency="EUR",
                payment_method=PaymentMethod.CARD,
                status=status,
            )
        )

    add(employee, "Dietas", dt.date(2024, 6, 2), 100, ExpenseStatus.APPROVED)
    add(employee, "Viajes", dt.date(2024, 2, 10), 300, ExpenseStatus.APPROVED)
    add(employee, "Transporte", dt.date(2024, 6, 10), 50, ExpenseStatus.PENDING)
    add(employee, "Dietas", dt.date(2024, 6, 1), 20, ExpenseStatus.REJECTED)
    add(other_employee, "Dietas", dt.date(2024, 6, 5), 1000, ExpenseStatus.APPROVED)
    # older than every period
    add(employee, "Dietas", dt.date(2023, 5, 1), 999, ExpenseStatus.APPROVED)
    await db_session.commit()
    return db_session


def test_period_start():
    assert period_start(AnalyticsPeriod.DAYS_30, TODAY) == dt.date(2024, 5, 16)
    assert period_start(AnalyticsPeriod.MONTHS_3, TODAY) == dt.date(2024, 3, 15)
    assert period_start(AnalyticsPeriod.YEAR_TO_DATE, TODAY) == dt.date(2024, 1, 1)
    assert period_start(AnalyticsPeriod.MONTHS_12, TODAY) == dt.date(2023, 6, 15)


async def test_employee_stats_only_count_own_expenses(ledger, employee):
    stats = await dashboard_stats(ledger, employee, today=TODAY)

    assert stats.total_expenses == 400
    assert stats.pending_expenses == 50
    assert stats.pending_count == 1
    assert stats.this_month_expenses == 100
    assert stats.daily_average == 6.67
    assert stats.top_category == "Viajes"
    dietas = next(b for b in stats.budget_usage if b.category == "Dietas")
    assert dietas.spent == 100
    assert dietas.percentage == 12.5


async def test_admin_stats_cover_everyone(ledger, admin):
    stats = await dashboard_stats(ledger, admin, today=TODAY)

    assert stats.total_expenses == 1400
    assert stats.this_month_expenses == 1100
    assert stats.top_category == "Dietas"
    dietas = next(b for b in stats.budget_usage if b.category == "Dietas")
    assert dietas.percentage == 137.5


async def test_stats_without_data(seeded, admin):
    stats = await dashboard_stats(seeded, admin, today=TODAY)
    assert stats.total_expenses == 0
    assert stats.daily_average == 0
    assert stats.top_category == NO_DATA


async def test_admin_analytics_report(ledger, admin):
    report = await analytics_report(ledger, admin, AnalyticsPeriod.MONTHS_12, ExpenseStatus.APPROVED, today=TODAY)

    assert report.total_expenses == 3
    assert report.total_amount == 1400
    assert report.avg_expense_amount == 466.67
    assert [(p.month, p.amount, p.count) for p in report.monthly_trend] == [("2024-02", 300, 1), ("2024-06", 1100, 2)]
    assert [(c.category, c.percentage) for c in report.category_breakdown] == [("Dietas", 78.57), ("Viajes", 21.43)]
    assert [(r.name, r.amount) for r in report.employee_leaderboard] == [("Luis", 1000), ("Ana", 400)]
    assert report.top_vendors[0].name == "Dietas SL"
    assert [(s.status, s.count, s.percentage) for s in report.status_distribution] == [
        (ExpenseStatus.APPROVED, 3, 100.0)
    ]


async def test_employee_analytics_all_statuses(ledger, employee):
    report = await analytics_report(ledger, employee, AnalyticsPeriod.YEAR_TO_DATE, None, today=TODAY)

    assert report.total_expenses == 4
    assert report.total_amount == 470
    assert report.employee_leaderboard == []
    shares = {s.status: (s.count, s.percentage) for s in report.status_distribution}
    assert shares == {
        ExpenseStatus.APPROVED: (2, 50.0),
        ExpenseStatus.PENDING: (1, 25.0),
        ExpenseStatus.REJECTED: (1, 25.0),
    }


async def test_dashboard_routes(client, employee):
    headers = auth_headers(employee)

    resp = await client.get("/dashboard/stats", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["top_category"] == NO_DATA

    resp = await client.get("/dashboard/analytics", params={"period": "30_days", "status": "ALL"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["total_expenses"] == 0

    resp = await client.get("/dashboard/analytics", params={"status": "DRAFT"}, headers=headers)
    assert resp.status_code == 422

    assert (await client.get("/dashboard/stats")).status_code == 401
