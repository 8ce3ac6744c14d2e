from __future__ import annotations

from urllib.parse import parse_qs, urlparse

from sqlalchemy import select

from conftest import auth_headers, expense_payload
from expense_desk.models.tables import Category
from expense_desk.services.storage_service import (
    content_disposition,
    normalise_filename,
    sha256_hex,
    sign_download_token,
    verify_download_token,
)

PDF = b"%PDF-1.4 fake receipt"


async def _upload(client, profile, content: bytes = PDF, name: str = "factura.pdf") -> dict:
    resp = await client.post(
        "/files",
        files={"file": (name, content, "application/pdf")},
        headers=auth_headers(profile),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_download_token_rules():
    sig = sign_download_token(7, 2_000)
    assert verify_download_token(7, 2_000, sig, now_ts=1_999)
    assert verify_download_token(7, 2_000, sig, now_ts=2_000)
    assert not verify_download_token(7, 2_000, sig, now_ts=2_001)
    assert not verify_download_token(8, 2_000, sig, now_ts=1_000)
    assert not verify_download_token(7, 2_000, sign_download_token(7, 2_000, secret="other"), now_ts=1_000)


def test_normalise_filename():
    assert normalise_filename("../../etc/passwd") == "etcpasswd"
    assert normalise_filename("mi ticket (1).jpg") == "miticket1.jpg"
    assert normalise_filename("...") == "receipt"


def test_content_disposition_is_latin1_safe():
    value = content_disposition('收据 "1".png')
    value.encode("latin-1")
    assert value == "inline; filename=\"__ _1_.png\"; filename*=UTF-8''%E6%94%B6%E6%8D%AE%20%221%22.png"
    assert content_disposition("factura.pdf") == "inline; filename=\"factura.pdf\"; filename*=UTF-8''factura.pdf"


async def test_upload_records_checksum_and_owner(client, employee, storage):
    body = await _upload(client, employee)

    assert body["checksum_sha256"] == sha256_hex(PDF)
    assert body["size_bytes"] == len(PDF)
    assert body["mime_type"] == "application/pdf"
    assert body["uploaded_by"] == employee.id
    assert body["original_name"] == "factura.pdf"


async def test_signed_url_downloads_file(client, employee):
    body = await _upload(client, employee)

    resp = await client.get(f"/files/{body['id']}/signed-url", headers=auth_headers(employee))
    assert resp.status_code == 200
    signed = resp.json()
    assert signed["expires_in"] == 60

    download = await client.get(signed["url"])
    assert download.status_code == 200
    assert download.content == PDF
    assert download.headers["content-type"] == "application/pdf"


async def test_download_keeps_non_latin1_filename(client, employee):
    body = await _upload(client, employee, name="收据.pdf")
    signed = (await client.get(f"/files/{body['id']}/signed-url", headers=auth_headers(employee))).json()

    download = await client.get(signed["url"])

    assert download.status_code == 200
    assert download.content == PDF
    assert download.headers["content-disposition"] == (
        "inline; filename=\"__.pdf\"; filename*=UTF-8''%E6%94%B6%E6%8D%AE.pdf"
    )


async def test_tampered_signature_is_rejected(client, employee):
    body = await _upload(client, employee)
    resp = await client.get(f"/files/{body['id']}/signed-url?expires_in=120", headers=auth_headers(employee))
    assert resp.json()["expires_in"] == 120
    query = parse_qs(urlparse(resp.json()["url"]).query)

    resp = await client.get(f"/files/{body['id']}/download", params={"exp": query["exp"][0], "sig": "forged"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid or expired link"

    expired = 1_000
    resp = await client.get(
        f"/files/{body['id']}/download",
        params={"exp": expired, "sig": sign_download_token(body["id"], expired)},
    )
    assert resp.status_code == 401


async def test_files_are_scoped_to_owner(client, employee, other_employee, admin):
    body = await _upload(client, employee)

    assert (await client.get(f"/files/{body['id']}", headers=auth_headers(other_employee))).status_code == 404
    assert (await client.get(f"/files/{body['id']}/signed-url", headers=auth_headers(other_employee))).status_code == 404
    assert (await client.get(f"/files/{body['id']}", headers=auth_headers(admin))).status_code == 200


async def test_expense_cannot_reference_someone_elses_file(client, employee, other_employee, db_session):
    body = await _upload(client, employee)
    cat = (await db_session.execute(select(Category.id).where(Category.name == "Material"))).scalar_one()

    resp = await client.post(
        "/expenses",
        json=expense_payload(cat, receipt_file_id=body["id"]),
        headers=auth_headers(other_employee),
    )
    assert resp.status_code == 422

    resp = await client.post(
        "/expenses",
        json=expense_payload(cat, receipt_file_id=body["id"]),
        headers=auth_headers(employee),
    )
    assert resp.status_code == 201
    assert resp.json()["receipt_file_id"] == body["id"]
