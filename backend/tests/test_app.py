from __future__ import annotations

import json
import types

from expense_desk.api.error_handlers import generic_exception_handler
from expense_desk.core.config import settings
from expense_desk.core.observability import _before_send


async def test_root_and_security_headers(client):
    resp = await client.get("/")
    assert resp.status_code == 200
    assert settings.PROJECT_NAME in resp.json()["message"]
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


async def test_health_reports_missing_analysis_key(client, monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["checks"]["database"] == "ok"
    assert body["checks"]["analysis"] == "not_configured"
    assert body["status"] == "degraded"


def test_generic_handler_hides_details_outside_development(monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    request = types.SimpleNamespace(url=types.SimpleNamespace(path="/boom"))

    resp = generic_exception_handler(request, RuntimeError("db password is hunter2"))

    assert resp.status_code == 500
    assert json.loads(resp.body) == {"error": "Internal server error"}


def test_sentry_event_scrubbing():
    event = {
        "request": {
            "headers": {"Authorization": "Bearer abc", "Cookie": "s=1", "User-Agent": "pytest"},
            "data": {"password": "secret"},
        }
    }
    scrubbed = _before_send(event, {})
    headers = scrubbed["request"]["headers"]
    assert "Authorization" not in headers and "Cookie" not in headers
    assert headers["User-Agent"] == "pytest"
    assert "data" not in scrubbed["request"]
