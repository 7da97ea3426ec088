import asyncio

import pytest

from finscan.core.storage import StorageError, build_object_path
from finscan.services.document_processing import PROCESS_DOCUMENT_TASK
from finscan.services.document_upload import UploadValidationError, upload_document

ORG_ID = "11111111-1111-1111-1111-111111111111"
USER_ID = "00000000-0000-0000-0000-000000000001"


class RecordingScheduler:
    def __init__(self):
        self.triggered = []

    async def trigger(self, task_id, payload):
        self.triggered.append((task_id, payload))
        return f"run_{len(self.triggered)}"

    async def replay(self, run_id):
        raise LookupError(run_id)


class BrokenRepository:
    def create_document(self, **kwargs):
        raise RuntimeError("insert failed")


def _upload(repository, storage, scheduler, *, content=b"%PDF-1.7 data", mime_type="application/pdf", name="inv.pdf"):
    return asyncio.run(
        upload_document(
            organization_id=ORG_ID,
            uploaded_by=USER_ID,
            file_name=name,
            content=content,
            mime_type=mime_type,
            repository=repository,
            storage=storage,
            scheduler=scheduler,
        )
    )


def test_upload_stores_file_inserts_pending_row_and_triggers_job(repository, storage):
    scheduler = RecordingScheduler()
    result = _upload(repository, storage, scheduler)

    document_id = result["document_id"]
    assert result["status"] == "pending"
    assert result["run_id"] == "run_1"
    assert scheduler.triggered == [(PROCESS_DOCUMENT_TASK, {"document_id": document_id})]

    path = f"{ORG_ID}/{document_id}/inv.pdf"
    assert storage.files[path] == (b"%PDF-1.7 data", "application/pdf")

    doc = repository.fetch_document(document_id)
    assert doc.status == "pending"
    assert doc.file_path == path
    assert doc.file_size == len(b"%PDF-1.7 data")
    assert str(doc.uploaded_by) == USER_ID
    # the trigger response carries a run id, but only the job records it on the row
    assert doc.run_id is None


@pytest.mark.parametrize(
    "content,mime_type,message",
    [
        (b"", "application/pdf", "Please select a file to upload"),
        (b"GIF89a", "image/gif", "Invalid file type. Please upload a PDF, JPEG, or PNG file"),
        (b"x" * (10 * 1024 * 1024 + 1), "image/png", "File size exceeds 10MB limit"),
    ],
)
def test_upload_validation(repository, storage, content, mime_type, message):
    scheduler = RecordingScheduler()
    with pytest.raises(UploadValidationError) as exc:
        _upload(repository, storage, scheduler, content=content, mime_type=mime_type)

    assert exc.value.message == message
    assert storage.files == {}
    assert scheduler.triggered == []


def test_upload_accepts_mime_with_parameters(repository, storage):
    result = _upload(repository, storage, RecordingScheduler(), mime_type="image/JPEG; charset=binary", name="r.jpg")
    assert repository.fetch_document(result["document_id"]).mime_type == "image/jpeg"


def test_insert_failure_removes_stored_file(storage):
    scheduler = RecordingScheduler()
    with pytest.raises(RuntimeError):
        _upload(BrokenRepository(), storage, scheduler)

    assert storage.files == {}
    assert len(storage.deleted) == 1
    assert scheduler.triggered == []


def test_storage_failure_leaves_no_row(repository, storage):
    storage.fail_upload = True
    with pytest.raises(StorageError):
        _upload(repository, storage, RecordingScheduler())
    assert repository.list_documents(ORG_ID) == []


def test_object_path_drops_directories():
    assert build_object_path("org", "doc", "../../etc/passwd") == "org/doc/passwd"
    assert build_object_path("org", "doc", "C:\\Users\\me\\scan.png") == "org/doc/scan.png"
    assert build_object_path("org", "doc", "") == "org/doc/document"
