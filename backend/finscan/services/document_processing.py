"""Process-document job: the single owner of a document's status lifecycle.

pending → processing → completed | failed. The job always re-fetches the row,
so invoking it again for the same id (scheduler retry, replay) is safe in the
last-writer-wins sense; there is no row-version check.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from finscan.core.config import get_settings
from finscan.core.storage import DocumentStorage
from finscan.services.ai.document_extract.contracts import DocumentType, dump_extracted_data
from finscan.services.ai.document_extract.service import ExtractionOutcome, extract_document
from finscan.services.document_repository import DocumentRepository, now_utc

logger = logging.getLogger(__name__)

PROCESS_DOCUMENT_TASK = "process-document"

Extractor = Callable[[str, Optional[str]], Awaitable[ExtractionOutcome]]


class DocumentNotFoundError(LookupError):
    pass


def _error_message(exc: BaseException) -> str:
    return str(exc).strip() or exc.__class__.__name__


async def process_document(
    payload: dict[str, Any],
    *,
    run_id: Optional[str],
    repository: DocumentRepository,
    storage: DocumentStorage,
    extract: Extractor = extract_document,
) -> dict[str, Any]:
    """Job entry point. ``payload = {"document_id": ...}``.

    Returns ``{"success": True, "documentType": ..., "confidence": ...}``.
    Any failure after the processing marker is persisted as ``failed`` and
    then re-raised so the scheduler's retry bookkeeping sees it.
    """
    document_id = str(payload.get("document_id") or payload.get("documentId") or "")

    # 1. Fetch document
    document = repository.fetch_document(document_id)
    if document is None:
        raise DocumentNotFoundError(f"Document not found: {document_id}")

    # 2. Mark processing (durable before extraction starts)
    repository.update_document(
        document_id,
        status="processing",
        processed_at=now_utc(),
        run_id=run_id,
        error_message=None,
        extracted_data=None,
        document_type=None,
        extraction_confidence=None,
    )
    logger.info("Processing document %s (run=%s)", document_id, run_id)

    try:
        # 3. Signed URL, must outlive the extraction
        settings = get_settings()
        signed_url = storage.get_signed_url(document.file_path, settings.signed_url_ttl_seconds)
        if not signed_url:
            raise RuntimeError("Failed to get signed URL")

        # 4. Classify + extract
        outcome = await extract(signed_url, document.mime_type or "application/pdf")
    except Exception as exc:
        logger.warning("Document %s failed: %s", document_id, exc)
        repository.update_document(
            document_id,
            status="failed",
            error_message=_error_message(exc),
            processed_at=now_utc(),
        )
        raise

    # 5. Persist outcome
    document_type = outcome.classification.document_type
    extracted_data = None
    if document_type != DocumentType.UNKNOWN and outcome.extracted_data is not None:
        extracted_data = dump_extracted_data(outcome.extracted_data)

    repository.update_document(
        document_id,
        document_type=document_type.value,
        extracted_data=extracted_data,
        extraction_confidence=outcome.classification.confidence,
        ai_model=outcome.model_identifier,
        status="completed",
        processed_at=now_utc(),
    )
    logger.info(
        "Document %s completed as %s (confidence=%.2f)",
        document_id,
        document_type.value,
        outcome.classification.confidence,
    )

    try:
        repository.record_ai_runs(document_id, outcome.runs)
    except Exception:
        logger.warning("Failed to write AI audit entries for %s", document_id, exc_info=True)

    return {
        "success": True,
        "documentType": document_type.value,
        "confidence": outcome.classification.confidence,
    }


async def reprocess_document(
    document_id: str,
    organization_id: str,
    *,
    repository: DocumentRepository,
    scheduler,
) -> dict[str, Any]:
    """Replay the document's last recorded run.

    Without a recorded ``run_id`` this is a successful no-op: nothing is
    replayed and no fresh run is enqueued.
    """
    try:
        document = repository.fetch_for_organization(document_id, organization_id)
        if document is None:
            return {"success": False, "error": "Document not found"}

        if not document.run_id:
            logger.info("Document %s has no recorded run; nothing to replay", document_id)
            return {"success": True}

        new_run_id = await scheduler.replay(document.run_id)
        logger.info("Replayed run %s for document %s as %s", document.run_id, document_id, new_run_id)
        return {"success": True, "run_id": new_run_id}
    except Exception:
        logger.exception("Reprocess failed for document %s", document_id)
        return {"success": False, "error": "Failed to reprocess document"}
