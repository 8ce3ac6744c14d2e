from __future__ import annotations

import pytest
from fastapi import HTTPException
from sqlalchemy import select

from conftest import auth_headers
from expense_desk.models.tables import Category, Expense, File
from expense_desk.services import expense_service
from expense_desk.services.extraction_service import ReceiptAnalysisError
from expense_desk.services.storage_service import sha256_hex

RECEIPT = b"\x89PNG\r\n\x1a\n-not-a-real-image"


def _upload(content: bytes = RECEIPT, name: str = "ticket.png", content_type: str = "image/png"):
    return {"file": (name, content, content_type)}


async def test_analyze_receipt_returns_reconciled_fields(client, employee, extraction):
    resp = await client.post("/analyze-receipt", files=_upload(), headers=auth_headers(employee))

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert "error" not in body
    data = body["data"]
    assert data["amount_gross"] == 100
    assert data["tax_vat"] == 0
    assert data["amount_net"] == 100
    assert data["category_suggestion"] == "Dietas"
    assert extraction.calls == [("ticket.png", "image/png", len(RECEIPT))]


async def test_analyze_receipt_failure_is_generic_500(client, employee, extraction):
    extraction.error = ReceiptAnalysisError("upstream model call failed: timeout")

    resp = await client.post("/analyze-receipt", files=_upload(), headers=auth_headers(employee))

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Receipt analysis failed"}


async def test_analyze_receipt_validates_upload(client, employee, extraction):
    headers = auth_headers(employee)

    resp = await client.post("/analyze-receipt", headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No se recibió ningún archivo"

    resp = await client.post("/analyze-receipt", files=_upload(b"GIF89a", "a.gif", "image/gif"), headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Tipo de archivo no válido. Solo se permiten JPG, PNG y PDF"

    resp = await client.post("/analyze-receipt", files=_upload(b""), headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "El archivo está vacío"

    assert extraction.calls == []


async def test_analyze_receipt_normalises_jpg_alias(client, employee, extraction):
    resp = await client.post(
        "/analyze-receipt",
        files=_upload(b"\xff\xd8\xff-jpeg", "foto.jpg", "image/jpg"),
        headers=auth_headers(employee),
    )
    assert resp.status_code == 200
    assert extraction.calls[0][1] == "image/jpeg"


async def test_analyze_receipt_requires_auth(client, extraction):
    resp = await client.post("/analyze-receipt", files=_upload())
    assert resp.status_code == 401


async def test_analyze_receipt_is_rate_limited(client, employee, clock):
    headers = auth_headers(employee)
    for _ in range(10):
        assert (await client.post("/analyze-receipt", files=_upload(), headers=headers)).status_code == 200

    resp = await client.post("/analyze-receipt", files=_upload(), headers=headers)
    assert resp.status_code == 429
    assert resp.json()["message"] == "Demasiados análisis de recibos. Intenta en 1 minuto."

    clock.advance(60)
    assert (await client.post("/analyze-receipt", files=_upload(), headers=headers)).status_code == 200


async def test_expense_from_receipt(client, employee, db_session):
    resp = await client.post("/expenses/from-receipt", files=_upload(), headers=auth_headers(employee))

    assert resp.status_code == 201, resp.text
    body = resp.json()
    expense = body["expense"]
    assert expense["status"] == "PENDING"
    assert expense["source"] == "AI_EXTRACTED"
    assert expense["amount_gross"] == 100
    assert expense["tax_vat"] == 0
    assert expense["amount_net"] == 100
    assert expense["expense_date"] == "2024-03-15"
    assert expense["payment_method"] == "CARD"
    assert expense["receipt_file_id"] == body["file"]["id"]

    dietas = (await db_session.execute(select(Category).where(Category.name == "Dietas"))).scalar_one()
    assert expense["category_id"] == dietas.id

    file_row = await db_session.get(File, body["file"]["id"])
    assert file_row.checksum_sha256 == sha256_hex(RECEIPT)
    assert file_row.uploaded_by == employee.id


async def test_expense_from_receipt_maps_project_guess(client, employee, extraction, db_session):
    extraction.result = extraction.result.model_copy(
        update={"project_code_guess": "int-ops", "tax_vat": 21.0, "amount_gross": 121.0, "amount_net": 100.0}
    )
    resp = await client.post("/expenses/from-receipt", files=_upload(), headers=auth_headers(employee))
    assert resp.status_code == 201
    expense = resp.json()["expense"]
    assert expense["project_code_id"] is not None
    assert expense["amount_net"] == 100


async def test_failed_receipt_analysis_stores_nothing(client, employee, extraction, db_session):
    extraction.error = ReceiptAnalysisError("empty model output")

    resp = await client.post("/expenses/from-receipt", files=_upload(), headers=auth_headers(employee))

    assert resp.status_code == 500
    assert (await db_session.execute(select(Expense))).scalars().all() == []
    assert (await db_session.execute(select(File))).scalars().all() == []


def _stored_blobs(storage) -> list:
    return [p for p in storage.base_dir.rglob("*") if p.is_file()]


@pytest.mark.parametrize("overrides", [{"amount_gross": 0.0}, {"tax_vat": -5.0}, {"amount_gross": float("nan")}])
async def test_unusable_receipt_amounts_store_nothing(client, employee, extraction, storage, db_session, overrides):
    extraction.result = extraction.result.model_copy(update=overrides)

    resp = await client.post("/expenses/from-receipt", files=_upload(), headers=auth_headers(employee))

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Receipt analysis failed"}
    assert (await db_session.execute(select(File))).scalars().all() == []
    assert _stored_blobs(storage) == []


async def test_expense_failure_after_upload_removes_stored_receipt(
    client, employee, storage, db_session, monkeypatch
):
    async def refuse(*args, **kwargs):
        raise HTTPException(status_code=422, detail="Category is not active")

    monkeypatch.setattr(expense_service, "create_expense", refuse)

    resp = await client.post("/expenses/from-receipt", files=_upload(), headers=auth_headers(employee))

    assert resp.status_code == 422
    assert (await db_session.execute(select(File))).scalars().all() == []
    assert _stored_blobs(storage) == []
