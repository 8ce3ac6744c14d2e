"""Receipt file routes.

Uploads are stored through ``StorageService``; reads go through signed
URLs so browsers can fetch a file without an ``Authorization`` header.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, UploadFile, status
from fastapi import File as FormFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.api.dependencies import get_db_session, read_validated_upload
from expense_desk.core.config import settings
from expense_desk.core.policies import scope_files
from expense_desk.core.security import get_current_profile
from expense_desk.models.schemas import FileRead, SignedUrlResponse
from expense_desk.models.tables import File, Profile
from expense_desk.services.storage_service import (
    StorageService,
    StoredFileNotFound,
    content_disposition,
    get_storage_service,
    store_upload,
    verify_download_token,
)

router = APIRouter(prefix="/files", tags=["files"])


async def _visible_file(db: AsyncSession, profile: Profile, file_id: int) -> File:
    stmt = scope_files(select(File).where(File.id == file_id), profile)
    file_row = (await db.execute(stmt)).scalar_one_or_none()
    if file_row is None:
        raise HTTPException(status_code=404, detail="File not found")
    return file_row


@router.post("", response_model=FileRead, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile | None = FormFile(default=None),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
    storage: StorageService = Depends(get_storage_service),
) -> FileRead:
    upload = await read_validated_upload(file)
    file_row = await store_upload(db, storage, profile, upload.data, upload.filename, upload.content_type)
    await db.commit()
    await db.refresh(file_row)
    return FileRead.model_validate(file_row)


@router.get("/{file_id}", response_model=FileRead)
async def get_file(
    file_id: int,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
) -> FileRead:
    return FileRead.model_validate(await _visible_file(db, profile, file_id))


@router.get("/{file_id}/signed-url", response_model=SignedUrlResponse)
async def get_signed_url(
    file_id: int,
    expires_in: Optional[int] = Query(default=None, ge=1, le=3600),
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db_session),
    storage: StorageService = Depends(get_storage_service),
) -> SignedUrlResponse:
    """Return a short-lived URL for the stored object."""
    file_row = await _visible_file(db, profile, file_id)
    ttl = expires_in or settings.SIGNED_URL_EXPIRES_SECONDS
    return SignedUrlResponse(url=storage.signed_url(file_row.id, file_row.storage_key, ttl), expires_in=ttl)


@router.get("/{file_id}/download")
async def download_file(
    file_id: int,
    exp: int,
    sig: str,
    db: AsyncSession = Depends(get_db_session),
    storage: StorageService = Depends(get_storage_service),
) -> Response:
    """Stream a stored file; access is controlled by the signed token."""
    if not verify_download_token(file_id, exp, sig):
        raise HTTPException(status_code=401, detail="Invalid or expired link")
    file_row = await db.get(File, file_id)
    if file_row is None:
        raise HTTPException(status_code=404, detail="File not found")
    try:
        data = storage.load(file_row.storage_key)
    except StoredFileNotFound:
        raise HTTPException(status_code=404, detail="File not found")
    return Response(
        content=data,
        media_type=file_row.mime_type,
        headers={"Content-Disposition": content_disposition(file_row.original_name)},
    )
