from __future__ import annotations

from conftest import auth_headers
from expense_desk.models.enums import AppRole
from expense_desk.scripts.init_db import DEFAULT_CATEGORIES, DEFAULT_PROJECT_CODES, promote_admin, seed_reference_data


async def test_seed_is_idempotent(db_session):
    first = await seed_reference_data(db_session)
    second = await seed_reference_data(db_session)
    assert first == len(DEFAULT_CATEGORIES) + len(DEFAULT_PROJECT_CODES)
    assert second == 0


async def test_employees_list_active_categories(client, employee):
    resp = await client.get("/categories", headers=auth_headers(employee))
    assert resp.status_code == 200
    names = [c["name"] for c in resp.json()]
    assert names == sorted(name for name, _ in DEFAULT_CATEGORIES)


async def test_admin_manages_categories(client, admin, employee):
    headers = auth_headers(admin)

    resp = await client.post("/categories", json={"name": "Formación", "budget_monthly": 250}, headers=headers)
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "ACTIVE"

    resp = await client.post("/categories", json={"name": "Formación"}, headers=headers)
    assert resp.status_code == 409

    resp = await client.patch(f"/categories/{created['id']}", json={"status": "INACTIVE"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "INACTIVE"

    employee_view = await client.get("/categories?include_inactive=true", headers=auth_headers(employee))
    assert "Formación" not in [c["name"] for c in employee_view.json()]

    admin_view = await client.get("/categories?include_inactive=true", headers=headers)
    assert "Formación" in [c["name"] for c in admin_view.json()]

    resp = await client.get("/audit-logs", params={"entity": "category"}, headers=headers)
    assert [log["action"] for log in resp.json()] == ["category.update", "category.create"]


async def test_employee_cannot_create_reference_data(client, employee):
    headers = auth_headers(employee)
    assert (await client.post("/categories", json={"name": "Fiestas"}, headers=headers)).status_code == 403
    assert (await client.post("/project-codes", json={"code": "X-1", "name": "X"}, headers=headers)).status_code == 403


async def test_project_codes_are_upper_cased_and_unique(client, admin):
    headers = auth_headers(admin)

    resp = await client.post("/project-codes", json={"code": " prj-new ", "name": "Nuevo"}, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["code"] == "PRJ-NEW"

    resp = await client.post("/project-codes", json={"code": "PRJ-NEW", "name": "Otro"}, headers=headers)
    assert resp.status_code == 409

    resp = await client.get("/project-codes", headers=headers)
    assert "PRJ-NEW" in [p["code"] for p in resp.json()]

    resp = await client.patch("/project-codes/9999", json={"name": "x"}, headers=headers)
    assert resp.status_code == 404


async def test_promote_admin(db_session, employee):
    assert await promote_admin(db_session, " ANA@example.com ")
    await db_session.refresh(employee)
    assert employee.role == AppRole.ADMIN
    assert not await promote_admin(db_session, "ghost@example.com")
