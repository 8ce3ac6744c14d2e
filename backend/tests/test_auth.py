from __future__ import annotations

import pytest
from sqlalchemy import select

from conftest import PASSWORD, auth_headers, make_profile
from expense_desk.core.security import create_access_token
from expense_desk.models.enums import UserStatus
from expense_desk.models.tables import AuditLog, Profile


async def test_signup_creates_employee_and_token(client, db_session):
    resp = await client.post(
        "/auth/signup",
        json={"email": "New.User@Example.com", "password": "abcdef", "name": "  Nueva  "},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["profile"]["email"] == "new.user@example.com"
    assert body["profile"]["name"] == "Nueva"
    assert body["profile"]["role"] == "EMPLOYEE"

    session = await client.get("/auth/session", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert session.status_code == 200
    assert session.json()["id"] == body["profile"]["id"]

    logs = (await db_session.execute(select(AuditLog).where(AuditLog.action == "auth.signup"))).scalars().all()
    assert len(logs) == 1
    assert logs[0].entity_id == body["profile"]["id"]


async def test_signup_duplicate_email(client, employee):
    resp = await client.post(
        "/auth/signup",
        json={"email": "ana@example.com", "password": "abcdef", "name": "Ana bis"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "User already registered"


async def test_signup_short_password_is_validation_error(client):
    resp = await client.post("/auth/signup", json={"email": "x@example.com", "password": "123", "name": "X"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"] == "Validation error"
    assert any(d["loc"][-1] == "password" for d in body["details"])


@pytest.mark.parametrize("password", ["p" * 80, "ñ" * 40])
async def test_signup_password_over_72_bytes_is_validation_error(client, db_session, password):
    resp = await client.post("/auth/signup", json={"email": "long@example.com", "password": password, "name": "Long"})
    assert resp.status_code == 422
    assert any(d["loc"][-1] == "password" for d in resp.json()["details"])
    assert (await db_session.execute(select(Profile))).scalars().all() == []


async def test_signin_success_and_wrong_password(client, employee):
    ok = await client.post("/auth/signin", json={"email": "ANA@example.com", "password": PASSWORD})
    assert ok.status_code == 200
    assert ok.json()["profile"]["id"] == employee.id

    bad = await client.post("/auth/signin", json={"email": "ana@example.com", "password": "nope-nope"})
    assert bad.status_code == 400
    assert bad.json()["detail"] == "Invalid login credentials"

    unknown = await client.post("/auth/signin", json={"email": "ghost@example.com", "password": PASSWORD})
    assert unknown.status_code == 400
    assert unknown.json()["detail"] == "Invalid login credentials"

    too_long = await client.post("/auth/signin", json={"email": "ana@example.com", "password": "p" * 80})
    assert too_long.status_code == 400


async def test_inactive_profile_cannot_sign_in_or_use_token(client, seeded):
    inactive = await make_profile(seeded, "old@example.com", status=UserStatus.INACTIVE)

    resp = await client.post("/auth/signin", json={"email": "old@example.com", "password": PASSWORD})
    assert resp.status_code == 403

    resp = await client.get("/auth/session", headers=auth_headers(inactive))
    assert resp.status_code == 403
    assert resp.json()["detail"] == "User account is inactive"


async def test_session_requires_valid_token(client, employee):
    assert (await client.get("/auth/session")).status_code == 401

    resp = await client.get("/auth/session", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid or expired token"

    expired = create_access_token(employee.id, expires_minutes=-1)
    resp = await client.get("/auth/session", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401

    ghost = create_access_token(9999)
    resp = await client.get("/auth/session", headers={"Authorization": f"Bearer {ghost}"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Profile not found"


async def test_signout_is_audited(client, employee, db_session):
    resp = await client.post("/auth/signout", headers=auth_headers(employee))
    assert resp.status_code == 204

    log = (await db_session.execute(select(AuditLog).where(AuditLog.action == "auth.signout"))).scalar_one()
    assert log.actor_user_id == employee.id
    assert log.entity == "profile"
