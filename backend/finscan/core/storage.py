import abc
import logging
from pathlib import PurePosixPath
from typing import Optional

from supabase import create_client

from finscan.core.config import get_settings

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


def build_object_path(organization_id: str, document_id: str, filename: Optional[str]) -> str:
    """``{organization_id}/{document_id}/{filename}``; directory parts of *filename* are dropped."""
    name = PurePosixPath((filename or "").replace("\\", "/")).name or "document"
    return f"{organization_id}/{document_id}/{name}"


class DocumentStorage(abc.ABC):
    """Opaque blob store for uploaded documents."""

    @abc.abstractmethod
    def upload_file(self, path: str, content: bytes, content_type: Optional[str]) -> None: ...

    @abc.abstractmethod
    def get_signed_url(self, path: str, ttl_seconds: int) -> str: ...

    @abc.abstractmethod
    def delete_file(self, path: str) -> None: ...


def _result_error(result) -> Optional[str]:
    if isinstance(result, dict):
        return result.get("error")
    return getattr(result, "error", None)


class SupabaseStorage(DocumentStorage):
    def __init__(self, client, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    @classmethod
    def from_settings(cls) -> "SupabaseStorage":
        settings = get_settings()
        key = settings.supabase_service_role_key or settings.supabase_key
        if not settings.supabase_url or not key:
            raise RuntimeError("Supabase storage credentials are not configured")
        return cls(create_client(settings.supabase_url, key), settings.storage_bucket)

    def _bucket_api(self):
        return self._client.storage.from_(self._bucket)

    def upload_file(self, path: str, content: bytes, content_type: Optional[str]) -> None:
        options = {"cache-control": "3600", "upsert": "false"}
        if content_type:
            options["content-type"] = content_type
        try:
            result = self._bucket_api().upload(path, content, options)
        except Exception as exc:
            raise StorageError(f"Failed to upload {path}") from exc
        if _result_error(result):
            raise StorageError(f"Failed to upload {path}")

    def get_signed_url(self, path: str, ttl_seconds: int) -> str:
        try:
            result = self._bucket_api().create_signed_url(path, ttl_seconds)
        except Exception as exc:
            raise StorageError("Failed to get signed URL") from exc
        url = None
        if isinstance(result, dict):
            url = result.get("signedURL") or result.get("signedUrl") or result.get("signed_url")
        if not url:
            raise StorageError("Failed to get signed URL")
        return url

    def delete_file(self, path: str) -> None:
        try:
            self._bucket_api().remove([path])
        except Exception as exc:
            raise StorageError(f"Failed to delete {path}") from exc


def get_storage() -> DocumentStorage:
    return SupabaseStorage.from_settings()
