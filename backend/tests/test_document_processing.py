import asyncio
import uuid
from functools import partial

import pytest
from sqlalchemy import select, text

from finscan.models.document import AuditLog
from finscan.services.ai.common.providers import MockProvider
from finscan.services.ai.common.router import ResolvedConfig
from finscan.services.ai.document_extract.service import ClassificationError, ExtractionError, extract_document
from finscan.services.document_processing import (
    DocumentNotFoundError,
    process_document,
    reprocess_document,
)

ORG_ID = "11111111-1111-1111-1111-111111111111"
OTHER_ORG_ID = "22222222-2222-2222-2222-222222222222"

RECEIPT = {
    "merchant_name": "Coffee Shop",
    "receipt_date": "2024-05-04",
    "items": [{"name": "Latte", "price": 4.5, "amount": 4.5}],
    "subtotal": 4.5,
    "total": 4.5,
}


def _classification(doc_type: str, confidence: float = 0.9) -> dict:
    return {"reasoning": "test", "documentType": doc_type, "confidence": confidence}


def _extractor(*responses):
    config = ResolvedConfig(provider=MockProvider(list(responses)), model="", output_retries=0)
    return partial(extract_document, config=config), config.provider


def _create(repository, *, organization_id=ORG_ID, mime_type="image/jpeg") -> str:
    document_id = str(uuid.uuid4())
    repository.create_document(
        document_id=document_id,
        organization_id=organization_id,
        uploaded_by=None,
        file_name="receipt.jpg",
        file_path=f"{organization_id}/{document_id}/receipt.jpg",
        file_size=1024,
        mime_type=mime_type,
    )
    return document_id


def _run(repository, storage, document_id, extract, run_id="run_1"):
    return asyncio.run(
        process_document(
            {"document_id": document_id},
            run_id=run_id,
            repository=repository,
            storage=storage,
            extract=extract,
        )
    )


def test_new_document_is_pending(repository):
    doc = repository.fetch_document(_create(repository))
    assert doc.status == "pending"
    assert doc.document_type is None
    assert doc.extracted_data is None


def test_receipt_completes_with_data(repository, storage):
    document_id = _create(repository)
    extract, provider = _extractor(_classification("receipt", 0.96), RECEIPT)

    result = _run(repository, storage, document_id, extract)

    assert result == {"success": True, "documentType": "receipt", "confidence": pytest.approx(0.96)}
    doc = repository.fetch_document(document_id)
    assert doc.status == "completed"
    assert doc.document_type == "receipt"
    assert doc.extracted_data["merchant_name"] == "Coffee Shop"
    assert doc.extracted_data["currency"] == "USD"
    assert doc.extracted_data["items"][0]["quantity"] == 1
    assert doc.extraction_confidence == pytest.approx(0.96)
    assert doc.ai_model == "mock:mock-v1"
    assert doc.run_id == "run_1"
    assert doc.error_message is None
    assert doc.processed_at is not None
    # the signed URL handed to the model points at the stored file
    assert provider.calls[0].document.url.startswith(f"https://storage.test/{doc.file_path}")


def test_unknown_completes_without_data(repository, storage):
    document_id = _create(repository)
    extract, provider = _extractor(_classification("unknown", 0.3))

    result = _run(repository, storage, document_id, extract)

    assert result["documentType"] == "unknown"
    assert len(provider.calls) == 1
    doc = repository.fetch_document(document_id)
    assert doc.status == "completed"
    assert doc.document_type == "unknown"
    assert doc.extracted_data is None
    assert doc.error_message is None


def test_missing_extracted_data_is_stored_as_sql_null(repository, storage, session_factory):
    document_id = _create(repository)
    extract, _ = _extractor(_classification("unknown", 0.3))
    _run(repository, storage, document_id, extract)

    with session_factory() as db:
        is_null = db.execute(text("SELECT extracted_data IS NULL FROM documents")).scalar_one()
    assert is_null


def test_classification_failure_marks_failed_and_reraises(repository, storage):
    document_id = _create(repository)
    extract, _ = _extractor(RuntimeError("quota exceeded"))

    with pytest.raises(ClassificationError):
        _run(repository, storage, document_id, extract)

    doc = repository.fetch_document(document_id)
    assert doc.status == "failed"
    assert "quota exceeded" in doc.error_message
    assert doc.extracted_data is None
    assert doc.processed_at is not None


def test_extraction_failure_marks_failed_and_reraises(repository, storage):
    document_id = _create(repository)
    bad = dict(RECEIPT)
    del bad["merchant_name"]
    extract, _ = _extractor(_classification("receipt"), bad)

    with pytest.raises(ExtractionError):
        _run(repository, storage, document_id, extract)

    doc = repository.fetch_document(document_id)
    assert doc.status == "failed"
    assert doc.error_message.startswith("Failed to extract receipt data:")
    assert doc.extracted_data is None


def test_signed_url_failure_marks_failed(repository, storage):
    document_id = _create(repository)
    storage.fail_signed_url = True
    extract, provider = _extractor(_classification("receipt"), RECEIPT)

    with pytest.raises(Exception):
        _run(repository, storage, document_id, extract)

    doc = repository.fetch_document(document_id)
    assert doc.status == "failed"
    assert doc.error_message == "Failed to get signed URL"
    assert provider.calls == []


def test_missing_document_raises_without_writes(repository, storage):
    extract, provider = _extractor()
    with pytest.raises(DocumentNotFoundError):
        _run(repository, storage, str(uuid.uuid4()), extract)
    assert provider.calls == []


def test_reprocessing_failed_document_clears_error(repository, storage):
    document_id = _create(repository)
    extract, _ = _extractor(RuntimeError("boom"))
    with pytest.raises(ClassificationError):
        _run(repository, storage, document_id, extract)

    extract, _ = _extractor(_classification("receipt"), RECEIPT)
    _run(repository, storage, document_id, extract, run_id="run_2")

    doc = repository.fetch_document(document_id)
    assert doc.status == "completed"
    assert doc.error_message is None
    assert doc.run_id == "run_2"


def test_camel_case_payload_key(repository, storage):
    document_id = _create(repository)
    extract, _ = _extractor(_classification("unknown", 0.1))
    result = asyncio.run(
        process_document(
            {"documentId": document_id},
            run_id="run_x",
            repository=repository,
            storage=storage,
            extract=extract,
        )
    )
    assert result["success"] is True


def test_ai_runs_are_audited(repository, storage, session_factory):
    document_id = _create(repository)
    extract, _ = _extractor(_classification("receipt"), RECEIPT)
    _run(repository, storage, document_id, extract)

    db = session_factory()
    try:
        actions = sorted(row.action for row in db.execute(select(AuditLog)).scalars())
    finally:
        db.close()
    assert actions == ["AI_DOCUMENT_CLASSIFIED", "AI_DOCUMENT_EXTRACTED"]


class RecordingScheduler:
    def __init__(self, known_runs=(), fail=False):
        self.known_runs = set(known_runs)
        self.replayed = []
        self.fail = fail

    async def trigger(self, task_id, payload):
        return "run_new"

    async def replay(self, run_id):
        if self.fail or run_id not in self.known_runs:
            raise LookupError(run_id)
        self.replayed.append(run_id)
        return f"{run_id}_replay"


def test_reprocess_without_run_id_is_noop(repository):
    document_id = _create(repository)
    scheduler = RecordingScheduler()

    result = asyncio.run(reprocess_document(document_id, ORG_ID, repository=repository, scheduler=scheduler))

    assert result == {"success": True}
    assert scheduler.replayed == []
    assert repository.fetch_document(document_id).status == "pending"


def test_reprocess_replays_recorded_run(repository, storage):
    document_id = _create(repository)
    extract, _ = _extractor(_classification("unknown", 0.1))
    _run(repository, storage, document_id, extract, run_id="run_abc")
    scheduler = RecordingScheduler(known_runs={"run_abc"})

    result = asyncio.run(reprocess_document(document_id, ORG_ID, repository=repository, scheduler=scheduler))

    assert result == {"success": True, "run_id": "run_abc_replay"}
    assert scheduler.replayed == ["run_abc"]


def test_reprocess_other_organization_not_found(repository):
    document_id = _create(repository, organization_id=OTHER_ORG_ID)
    result = asyncio.run(
        reprocess_document(document_id, ORG_ID, repository=repository, scheduler=RecordingScheduler())
    )
    assert result == {"success": False, "error": "Document not found"}


def test_reprocess_scheduler_error_is_reported(repository, storage):
    document_id = _create(repository)
    extract, _ = _extractor(_classification("unknown", 0.1))
    _run(repository, storage, document_id, extract, run_id="run_gone")

    result = asyncio.run(
        reprocess_document(document_id, ORG_ID, repository=repository, scheduler=RecordingScheduler(fail=True))
    )
    assert result == {"success": False, "error": "Failed to reprocess document"}
