"""Storage service abstraction.

Supports two backends selected via ``settings.STORAGE_BACKEND``:

1. **minio**: Uses the MinIO S3-compatible object storage.
2. **filesystem** (default): Stores files under ``settings.STORAGE_DIRECTORY``.

All saved objects return a *relative key* (``profile_id/uuid_filename``)
that is persisted on the ``File`` row together with the SHA-256 of the
content. Downloads use short-lived signed URLs: a MinIO presigned GET,
or for the filesystem backend an HMAC-signed link to this API's
``/files/{id}/download`` route.
"""

from __future__ import annotations

import base64
import datetime as dt
import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

from minio import Minio
from minio.error import S3Error
from sqlalchemy.ext.asyncio import AsyncSession

from expense_desk.core.config import settings
from expense_desk.models.tables import File as FileRecord, Profile

logger = logging.getLogger(__name__)


class StoredFileNotFound(LookupError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    size_bytes: int
    checksum_sha256: str


def normalise_filename(filename: str) -> str:
    """Remove potentially dangerous characters and ensure a safe filename."""
    keepchars = {"-", "_", "."}
    safe = "".join(c for c in filename if c.isalnum() or c in keepchars).lstrip(".")
    return safe or "receipt"


def content_disposition(filename: str, disposition: str = "inline") -> str:
    """Build a latin-1 safe ``Content-Disposition`` value with an RFC 5987 UTF-8 name."""
    fallback = "".join(c if 32 <= ord(c) < 127 and c not in '"\\' else "_" for c in filename) or "receipt"
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sign_download_token(file_id: int, exp_ts: int, secret: Optional[str] = None) -> str:
    msg = f"{file_id}:{exp_ts}".encode()
    key = (secret or settings.SECRET_KEY).encode()
    digest = hmac.new(key, msg, hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def verify_download_token(file_id: int, exp_ts: int, sig: str, now_ts: Optional[int] = None) -> bool:
    """True when ``sig`` matches ``(file_id, exp_ts)`` and the link has not expired."""
    now_ts = int(dt.datetime.now(dt.timezone.utc).timestamp()) if now_ts is None else now_ts
    if now_ts > int(exp_ts):
        return False
    return hmac.compare_digest(sign_download_token(file_id, int(exp_ts)), sig or "")


class StorageService:
    """Unified storage service (MinIO or filesystem)."""

    def __init__(self, base_dir: str | None = None, backend: str | None = None) -> None:
        self.backend = (backend or settings.STORAGE_BACKEND or "filesystem").lower()
        if self.backend == "minio":
            self._client = Minio(
                settings.MINIO_ENDPOINT,
                access_key=settings.MINIO_ACCESS_KEY,
                secret_key=settings.MINIO_SECRET_KEY,
                secure=bool(settings.MINIO_USE_SSL),
            )
            self.bucket = settings.MINIO_BUCKET_NAME
            self._bucket_checked = False
        else:
            self.backend = "filesystem"
            self.base_dir = Path(base_dir or settings.STORAGE_DIRECTORY).resolve()
            self.base_dir.mkdir(parents=True, exist_ok=True)
            logger.info("[storage] filesystem base_dir=%s", self.base_dir)

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        if not self._client.bucket_exists(self.bucket):
            self._client.make_bucket(self.bucket)
        self._bucket_checked = True

    def _full_path(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if self.base_dir not in path.parents:
            raise StoredFileNotFound(key)
        return path

    def save_bytes(self, data: bytes, original_name: str, content_type: str, profile_id: int) -> StoredObject:
        """Persist ``data`` under the profile's namespace and return its key and checksum."""
        if not data:
            raise ValueError("Empty upload payload")
        object_name = f"{profile_id}/{uuid.uuid4().hex}_{normalise_filename(original_name)}"
        checksum = sha256_hex(data)

        if self.backend == "minio":
            self._ensure_bucket()
            self._client.put_object(
                self.bucket,
                object_name,
                BytesIO(data),
                len(data),
                content_type=content_type or "application/octet-stream",
            )
            logger.info("[storage] minio put key=%s size=%d", object_name, len(data))
        else:
            path = self._full_path(object_name)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            logger.info("[storage] fs saved key=%s size=%d", object_name, len(data))
        return StoredObject(key=object_name, size_bytes=len(data), checksum_sha256=checksum)

    def load(self, key: str) -> bytes:
        """Load raw bytes for a stored object by key."""
        if self.backend == "minio":
            try:
                resp = self._client.get_object(self.bucket, key)
            except S3Error as e:
                raise StoredFileNotFound(key) from e
            try:
                return resp.read()
            finally:
                resp.close()
                resp.release_conn()
        try:
            return self._full_path(key).read_bytes()
        except FileNotFoundError as e:
            raise StoredFileNotFound(key) from e

    def delete(self, key: str) -> None:
        """Remove a stored object; a missing object is not an error."""
        if self.backend == "minio":
            try:
                self._client.remove_object(self.bucket, key)
            except S3Error as e:
                logger.warning("[storage] minio remove failed key=%s err=%s", key, e)
                return
            logger.info("[storage] minio removed key=%s", key)
            return
        try:
            self._full_path(key).unlink(missing_ok=True)
        except StoredFileNotFound:
            return
        logger.info("[storage] fs removed key=%s", key)

    def signed_url(self, file_id: int, key: str, expires_in: int) -> str:
        """Return a URL granting read access to the object for ``expires_in`` seconds."""
        if self.backend == "minio":
            return self._client.presigned_get_object(self.bucket, key, expires=dt.timedelta(seconds=expires_in))
        exp_ts = int(dt.datetime.now(dt.timezone.utc).timestamp()) + int(expires_in)
        q = urlencode({"exp": exp_ts, "sig": sign_download_token(file_id, exp_ts)})
        return f"/files/{file_id}/download?{q}"


_storage: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """FastAPI dependency returning the process-wide storage service."""
    global _storage
    if _storage is None:
        _storage = StorageService()
    return _storage


async def store_upload(
    db: AsyncSession,
    storage: StorageService,
    owner: Profile,
    data: bytes,
    original_name: str,
    content_type: str,
) -> FileRecord:
    """Persist an upload and stage its ``File`` row on ``db`` (flushed, not committed)."""
    stored = storage.save_bytes(data, original_name, content_type, owner.id)
    record = FileRecord(
        original_name=original_name[:255],
        mime_type=content_type,
        size_bytes=stored.size_bytes,
        storage_key=stored.key,
        checksum_sha256=stored.checksum_sha256,
        uploaded_by=owner.id,
    )
    db.add(record)
    try:
        await db.flush()
    except Exception:
        storage.delete(stored.key)
        raise
    return record
