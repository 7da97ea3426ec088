import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from finscan.core.auth import CurrentUser, require_organization, require_roles
from finscan.core.config import get_settings
from finscan.core.dependencies import get_document_repository, get_document_storage, get_job_scheduler
from finscan.core.storage import DocumentStorage, StorageError
from finscan.models.document import Document
from finscan.schemas.documents import (
    DeleteOut,
    DocumentDetailOut,
    DocumentListResponse,
    DocumentOut,
    DocumentUploadOut,
    ReprocessOut,
)
from finscan.services.document_jobs import JobScheduler
from finscan.services.document_processing import reprocess_document
from finscan.services.document_repository import DocumentRepository
from finscan.services.document_upload import UploadValidationError, delete_document, upload_document
from finscan.utils.rate_limit import enforce_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter()


def _document_out(doc: Document) -> dict:
    return {
        "id": str(doc.id),
        "file_name": doc.file_name,
        "file_size": doc.file_size,
        "mime_type": doc.mime_type,
        "status": doc.status,
        "document_type": doc.document_type,
        "extraction_confidence": doc.extraction_confidence,
        "error_message": doc.error_message,
        "created_at": doc.created_at,
        "processed_at": doc.processed_at,
    }


def _get_org_document(repository: DocumentRepository, document_id: str, current_user: CurrentUser) -> Document:
    doc = repository.fetch_for_organization(document_id, current_user.organization_id)
    if doc is None:
        raise HTTPException(404, "Document not found")
    return doc


@router.post("/documents", response_model=DocumentUploadOut, status_code=201)
async def upload_document_endpoint(
    file: UploadFile = File(...),
    current_user: CurrentUser = Depends(require_organization),
    repository: DocumentRepository = Depends(get_document_repository),
    storage: DocumentStorage = Depends(get_document_storage),
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    settings = get_settings()
    enforce_rate_limit("upload", current_user.organization_id, settings.rate_limit_upload_per_min)

    content = await file.read()
    try:
        result = await upload_document(
            organization_id=current_user.organization_id,
            uploaded_by=current_user.id,
            file_name=file.filename or "document",
            content=content,
            mime_type=file.content_type,
            repository=repository,
            storage=storage,
            scheduler=scheduler,
        )
    except UploadValidationError as exc:
        raise HTTPException(422, exc.message) from exc
    except StorageError as exc:
        logger.error("Document upload to storage failed: %s", exc)
        raise HTTPException(502, "Failed to upload file") from exc
    return result


@router.get("/documents", response_model=DocumentListResponse)
def list_documents(
    limit: int = Query(100, ge=1, le=500),
    current_user: CurrentUser = Depends(require_organization),
    repository: DocumentRepository = Depends(get_document_repository),
):
    docs = repository.list_documents(current_user.organization_id, limit=limit)
    return DocumentListResponse(items=[DocumentOut(**_document_out(doc)) for doc in docs])


@router.get("/documents/{document_id}", response_model=DocumentDetailOut)
def get_document(
    document_id: str,
    current_user: CurrentUser = Depends(require_organization),
    repository: DocumentRepository = Depends(get_document_repository),
    storage: DocumentStorage = Depends(get_document_storage),
):
    doc = _get_org_document(repository, document_id, current_user)

    file_url = None
    try:
        file_url = storage.get_signed_url(doc.file_path, get_settings().signed_url_ttl_seconds)
    except StorageError:
        # The detail view still renders without a preview link.
        logger.warning("Signed URL unavailable for document %s", document_id)

    return DocumentDetailOut(
        **_document_out(doc),
        extracted_data=doc.extracted_data,
        ai_model=doc.ai_model,
        updated_at=doc.updated_at,
        file_url=file_url,
    )


@router.post("/documents/{document_id}/reprocess", response_model=ReprocessOut)
async def reprocess_document_endpoint(
    document_id: str,
    current_user: CurrentUser = Depends(require_organization),
    repository: DocumentRepository = Depends(get_document_repository),
    scheduler: JobScheduler = Depends(get_job_scheduler),
):
    result = await reprocess_document(
        document_id,
        current_user.organization_id,
        repository=repository,
        scheduler=scheduler,
    )
    if not result.get("success") and result.get("error") == "Document not found":
        raise HTTPException(404, "Document not found")
    return result


@router.delete("/documents/{document_id}", response_model=DeleteOut)
def delete_document_endpoint(
    document_id: str,
    current_user: CurrentUser = Depends(require_roles("OWNER")),
    repository: DocumentRepository = Depends(get_document_repository),
    storage: DocumentStorage = Depends(get_document_storage),
):
    if not delete_document(
        document_id,
        current_user.organization_id,
        repository=repository,
        storage=storage,
    ):
        raise HTTPException(404, "Document not found")
    return {"success": True}
