from __future__ import annotations

from conftest import PASSWORD, auth_headers


async def test_employee_sees_only_self(client, employee, other_employee):
    resp = await client.get("/profiles", headers=auth_headers(employee))
    assert [p["email"] for p in resp.json()] == ["ana@example.com"]

    resp = await client.get("/profiles/me", headers=auth_headers(employee))
    assert resp.json()["name"] == "Ana"
    assert "password_hash" not in resp.json()


async def test_update_own_profile(client, employee):
    resp = await client.patch(
        "/profiles/me",
        json={"department": "Ventas", "region": "<b>Norte</b>"},
        headers=auth_headers(employee),
    )
    assert resp.status_code == 200
    assert resp.json()["department"] == "Ventas"
    assert resp.json()["region"] == "bNorte/b"


async def test_employee_cannot_change_roles(client, employee, other_employee):
    resp = await client.patch(
        f"/profiles/{other_employee.id}",
        json={"role": "ADMIN"},
        headers=auth_headers(employee),
    )
    assert resp.status_code == 403


async def test_admin_promotes_and_toggles(client, admin, employee):
    headers = auth_headers(admin)

    resp = await client.patch(f"/profiles/{employee.id}", json={"role": "ADMIN"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["role"] == "ADMIN"

    resp = await client.post(f"/profiles/{employee.id}/toggle-status", headers=headers)
    assert resp.json()["status"] == "INACTIVE"

    signin = await client.post("/auth/signin", json={"email": "ana@example.com", "password": PASSWORD})
    assert signin.status_code == 403

    resp = await client.post(f"/profiles/{employee.id}/toggle-status", headers=headers)
    assert resp.json()["status"] == "ACTIVE"

    resp = await client.get("/audit-logs", params={"entity": "profile", "entity_id": employee.id}, headers=headers)
    assert resp.headers["X-Total-Count"] == "3"
    assert resp.json()[0]["metadata"] == {"status": "ACTIVE"}


async def test_admin_cannot_deactivate_self(client, admin):
    headers = auth_headers(admin)
    resp = await client.post(f"/profiles/{admin.id}/toggle-status", headers=headers)
    assert resp.status_code == 400

    resp = await client.patch(f"/profiles/{admin.id}", json={"status": "INACTIVE"}, headers=headers)
    assert resp.status_code == 400


async def test_admin_cannot_demote_self(client, admin):
    headers = auth_headers(admin)
    resp = await client.patch(f"/profiles/{admin.id}", json={"role": "EMPLOYEE"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "You cannot remove your own admin role"

    me = await client.get("/profiles/me", headers=headers)
    assert me.json()["role"] == "ADMIN"

    resp = await client.patch(f"/profiles/{admin.id}", json={"role": "ADMIN", "name": "Jefa"}, headers=headers)
    assert resp.status_code == 200


async def test_audit_logs_are_scoped_to_actor(client, employee, other_employee, admin):
    await client.patch("/profiles/me", json={"department": "A"}, headers=auth_headers(employee))
    await client.patch("/profiles/me", json={"department": "B"}, headers=auth_headers(other_employee))

    resp = await client.get("/audit-logs", headers=auth_headers(employee))
    assert resp.headers["X-Total-Count"] == "1"
    assert resp.json()[0]["actor_user_id"] == employee.id

    resp = await client.get("/audit-logs", params={"limit": 1}, headers=auth_headers(admin))
    assert resp.headers["X-Total-Count"] == "2"
    assert len(resp.json()) == 1
