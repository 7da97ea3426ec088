"""Document intake and removal: store the file, insert a pending row, enqueue processing."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from finscan.core.config import get_settings
from finscan.core.storage import DocumentStorage, StorageError, build_object_path
from finscan.services.document_jobs import JobScheduler
from finscan.services.document_processing import PROCESS_DOCUMENT_TASK
from finscan.services.document_repository import DocumentRepository

logger = logging.getLogger(__name__)


class UploadValidationError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


def validate_upload(content: Optional[bytes], mime_type: Optional[str]) -> str:
    """Return the normalized MIME type or raise ``UploadValidationError``."""
    settings = get_settings()
    if not content:
        raise UploadValidationError("file", "Please select a file to upload")

    normalized = (mime_type or "").split(";", 1)[0].strip().lower()
    allowed = {m.strip().lower() for m in settings.allowed_mime_types}
    if normalized not in allowed:
        raise UploadValidationError("file", "Invalid file type. Please upload a PDF, JPEG, or PNG file")

    if len(content) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes // (1024 * 1024)
        raise UploadValidationError("file", f"File size exceeds {limit_mb}MB limit")
    return normalized


async def upload_document(
    *,
    organization_id: str,
    uploaded_by: Optional[str],
    file_name: str,
    content: bytes,
    mime_type: Optional[str],
    repository: DocumentRepository,
    storage: DocumentStorage,
    scheduler: JobScheduler,
) -> dict[str, Any]:
    normalized_mime = validate_upload(content, mime_type)

    document_id = str(uuid.uuid4())
    file_path = build_object_path(organization_id, document_id, file_name)

    storage.upload_file(file_path, content, normalized_mime)

    try:
        document = repository.create_document(
            document_id=document_id,
            organization_id=organization_id,
            uploaded_by=uploaded_by,
            file_name=file_name or "document",
            file_path=file_path,
            file_size=len(content),
            mime_type=normalized_mime,
        )
    except Exception:
        logger.exception("Document insert failed; removing stored file %s", file_path)
        try:
            storage.delete_file(file_path)
        except Exception:
            logger.warning("Cleanup of %s failed", file_path, exc_info=True)
        raise

    run_id = await scheduler.trigger(PROCESS_DOCUMENT_TASK, {"document_id": document_id})
    logger.info("Document %s uploaded (size=%d, run=%s)", document_id, len(content), run_id)

    return {
        "document_id": document_id,
        "run_id": run_id,
        "status": document.status,
    }


def delete_document(
    document_id: str,
    organization_id: str,
    *,
    repository: DocumentRepository,
    storage: DocumentStorage,
) -> bool:
    """Delete the document row and its stored file; ``False`` if not in *organization_id*."""
    document = repository.fetch_for_organization(document_id, organization_id)
    if document is None:
        return False

    repository.delete_document(document_id)
    try:
        storage.delete_file(document.file_path)
    except StorageError:
        logger.warning("Stored file %s of deleted document %s was not removed", document.file_path, document_id)
    logger.info("Document %s deleted", document_id)
    return True
