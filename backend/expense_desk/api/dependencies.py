"""Common dependencies for FastAPI routes.

Shared helpers for database access, upload validation and request
metadata. Authentication lives in ``expense_desk.core.security`` and the
row-level checks in ``expense_desk.core.policies``.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request, UploadFile, status

from expense_desk.core.config import settings
from expense_desk.core.database import get_db
from expense_desk.services.rate_limiter import client_ip


# Alias for `get_db` to be imported in routers. Same callable, so one session per request
# is shared with `get_current_profile`.
get_db_session = get_db


def request_ip(request: Request) -> str:
    return client_ip(request)


@dataclass
class ValidatedUpload:
    data: bytes
    filename: str
    content_type: str


async def read_validated_upload(upload: UploadFile | None) -> ValidatedUpload:
    """Read an uploaded receipt and enforce type and size limits."""
    if upload is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No se recibió ningún archivo")
    content_type = (upload.content_type or "").lower()
    if content_type not in settings.ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tipo de archivo no válido. Solo se permiten JPG, PNG y PDF",
        )
    data = await upload.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="El archivo está vacío")
    if len(data) > settings.MAX_UPLOAD_SIZE:
        max_mb = settings.MAX_UPLOAD_SIZE // (1024 * 1024)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"El archivo es demasiado grande. Máximo {max_mb}MB",
        )
    if content_type == "image/jpg":
        content_type = "image/jpeg"
    return ValidatedUpload(data=data, filename=upload.filename or "receipt", content_type=content_type)
