"""Object storage for intake attachments.

Uploads go to a Supabase storage bucket over its REST API. Routes only see
the ``ObjectStore`` interface (via ``get_store``) so tests can swap in an
in-memory store.
"""
from __future__ import annotations
import logging
import re
import time
import uuid
from typing import Optional

import httpx

from config import SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, STORAGE_BUCKET, STORAGE_TIMEOUT
from errors import ValidationError, InternalError

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 50 * 1024 * 1024  # 50MB

ALLOWED_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/gif",
    "text/csv",
}


class StorageError(Exception):
    pass


class ObjectStore:
    def upload(self, data: bytes, content_type: str, key: str) -> str:
        """Store ``data`` under ``key`` and return its public URL."""
        raise NotImplementedError

    def delete(self, keys: list[str]) -> None:
        raise NotImplementedError

    def key_for(self, url: str) -> Optional[str]:
        """Object key for a public URL issued by this store, else None."""
        raise NotImplementedError


class SupabaseStore(ObjectStore):
    def __init__(self, base_url: str, service_key: str, bucket: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }
        self._timeout = httpx.Timeout(timeout, connect=10.0)

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{key}"

    def key_for(self, url: str) -> Optional[str]:
        prefix = f"{self.base_url}/storage/v1/object/public/{self.bucket}/"
        if url.startswith(prefix):
            return url[len(prefix):] or None
        return None

    def upload(self, data: bytes, content_type: str, key: str) -> str:
        headers = {**self._headers, "Content-Type": content_type, "x-upsert": "false"}
        try:
            r = httpx.post(
                f"{self.base_url}/storage/v1/object/{self.bucket}/{key}",
                content=data,
                headers=headers,
                timeout=self._timeout,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"upload of {key} failed: {e}") from e
        return self.public_url(key)

    def delete(self, keys: list[str]) -> None:
        if not keys:
            return
        try:
            r = httpx.request(
                "DELETE",
                f"{self.base_url}/storage/v1/object/{self.bucket}",
                json={"prefixes": keys},
                headers=self._headers,
                timeout=self._timeout,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"delete of {len(keys)} objects failed: {e}") from e


def get_store() -> ObjectStore:
    if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
        raise InternalError("File storage is not configured")
    return SupabaseStore(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, STORAGE_BUCKET, STORAGE_TIMEOUT)


def make_key(session_token: str, filename: str) -> str:
    """``{session_token}/{epoch_ms}-{random}.{ext}``; ``ext`` is ``bin`` unless the name ends in an alphanumeric one."""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if not re.fullmatch(r"[a-z0-9]+", ext):
        ext = "bin"
    return f"{session_token}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{ext}"


def check_upload(content_type: Optional[str], size: int) -> None:
    if size == 0:
        raise ValidationError("No file provided")
    if size > MAX_FILE_SIZE:
        raise ValidationError("File exceeds 50MB limit")
    if content_type not in ALLOWED_TYPES:
        raise ValidationError("File type not allowed")


def upload_attachment(store: ObjectStore, session_token: str, filename: str,
                      content_type: str, data: bytes) -> dict:
    check_upload(content_type, len(data))
    key = make_key(session_token, filename)
    try:
        url = store.upload(data, content_type, key)
    except StorageError:
        logger.exception("Upload error for %s", key)
        raise InternalError("Failed to upload file")
    logger.info("Stored %s (%d bytes)", key, len(data))
    return {"file_url": url, "file_key": key, "file_name": filename, "file_size": len(data)}


def remove_objects(store: ObjectStore, urls: list[str]) -> int:
    """Best-effort cleanup of stored objects; failures are only logged."""
    keys = [k for k in (store.key_for(u) for u in urls) if k]
    if not keys:
        return 0
    try:
        store.delete(keys)
    except StorageError:
        logger.exception("Failed to delete %d stored objects", len(keys))
        return 0
    return len(keys)


def get_optional_store() -> Optional[ObjectStore]:
    # cleanup paths run without storage configured
    if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
        return None
    return get_store()
