import uuid

import pytest
from fastapi.testclient import TestClient

from finscan.core.auth import CurrentUser, get_current_user
from finscan.core.dependencies import (
    get_document_repository,
    get_document_storage,
    get_job_scheduler,
    get_query_executor,
)
from finscan.core.storage import StorageError
from finscan.main import app
from finscan.services.document_repository import now_utc
from finscan.utils.rate_limit import rate_limiter

ORG_ID = "11111111-1111-1111-1111-111111111111"
OTHER_ORG_ID = "22222222-2222-2222-2222-222222222222"
USER_ID = "00000000-0000-0000-0000-000000000001"


class RecordingScheduler:
    def __init__(self):
        self.triggered = []
        self.replayed = []

    async def trigger(self, task_id, payload):
        self.triggered.append((task_id, payload))
        return "run_api_1"

    async def replay(self, run_id):
        self.replayed.append(run_id)
        return f"{run_id}_replay"


class StaticExecutor:
    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    def execute_read_query(self, sql, *, organization_id):
        self.calls.append((sql, organization_id))
        return self.rows


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def client(repository, storage, scheduler):
    rate_limiter.reset()
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(
        id=USER_ID, role="MEMBER", email="member@test.local", organization_id=ORG_ID
    )
    app.dependency_overrides[get_document_repository] = lambda: repository
    app.dependency_overrides[get_document_storage] = lambda: storage
    app.dependency_overrides[get_job_scheduler] = lambda: scheduler
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        rate_limiter.reset()


def _seed(repository, organization_id=ORG_ID, *, completed=True, run_id=None) -> str:
    document_id = str(uuid.uuid4())
    repository.create_document(
        document_id=document_id,
        organization_id=organization_id,
        uploaded_by=USER_ID,
        file_name="acme.pdf",
        file_path=f"{organization_id}/{document_id}/acme.pdf",
        file_size=42,
        mime_type="application/pdf",
    )
    if completed:
        repository.update_document(
            document_id,
            status="completed",
            document_type="invoice",
            extracted_data={"vendor_name": "Acme Corp", "total": 99.5},
            extraction_confidence=0.91,
            ai_model="mock:mock-v1",
            run_id=run_id,
            processed_at=now_utc(),
        )
    return document_id


def test_upload_returns_201_and_triggers_processing(client, storage, scheduler):
    resp = client.post(
        "/api/v1/documents",
        files={"file": ("invoice.pdf", b"%PDF-1.7 bytes", "application/pdf")},
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["status"] == "pending"
    assert body["run_id"] == "run_api_1"
    assert scheduler.triggered == [("process-document", {"document_id": body["document_id"]})]
    assert f"{ORG_ID}/{body['document_id']}/invoice.pdf" in storage.files


def test_upload_rejects_bad_mime(client):
    resp = client.post(
        "/api/v1/documents",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"] == "Invalid file type. Please upload a PDF, JPEG, or PNG file"


def test_list_is_scoped_to_session_organization(client, repository):
    own = _seed(repository)
    _seed(repository, OTHER_ORG_ID)

    resp = client.get("/api/v1/documents")
    assert resp.status_code == 200
    ids = [item["id"] for item in resp.json()["items"]]
    assert ids == [own]


def test_detail_includes_data_and_signed_url(client, repository):
    document_id = _seed(repository)

    resp = client.get(f"/api/v1/documents/{document_id}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["extracted_data"]["vendor_name"] == "Acme Corp"
    assert body["file_url"].startswith(f"https://storage.test/{ORG_ID}/{document_id}/")


def test_detail_survives_signed_url_failure(client, repository, storage):
    document_id = _seed(repository)
    storage.fail_signed_url = True

    resp = client.get(f"/api/v1/documents/{document_id}")
    assert resp.status_code == 200
    assert resp.json()["file_url"] is None


def test_other_organization_document_is_404(client, repository):
    foreign = _seed(repository, OTHER_ORG_ID)
    assert client.get(f"/api/v1/documents/{foreign}").status_code == 404
    assert client.post(f"/api/v1/documents/{foreign}/reprocess").status_code == 404


def test_invalid_document_id_is_404(client):
    assert client.get("/api/v1/documents/not-a-uuid").status_code == 404


def test_reprocess_replays_recorded_run(client, repository, scheduler):
    document_id = _seed(repository, run_id="run_prev")

    resp = client.post(f"/api/v1/documents/{document_id}/reprocess")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "run_id": "run_prev_replay", "error": None}
    assert scheduler.replayed == ["run_prev"]


def test_reprocess_without_run_is_noop(client, repository, scheduler):
    document_id = _seed(repository, completed=False)

    resp = client.post(f"/api/v1/documents/{document_id}/reprocess")
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert scheduler.replayed == []


def test_missing_organization_is_401(client):
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(id=USER_ID, role="MEMBER")
    resp = client.get("/api/v1/documents")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "No active organization"


def test_missing_bearer_token_is_401(client):
    app.dependency_overrides.pop(get_current_user, None)
    assert client.get("/api/v1/documents").status_code == 401


def test_assistant_search_uses_session_organization(client, monkeypatch):
    from finscan.api.v1 import assistant as assistant_api

    captured = {}

    async def fake_search(query, organization_id, *, executor):
        captured["query"] = query
        captured["organization_id"] = organization_id
        return {
            "success": True,
            "found": 1,
            "explanation": "Invoices from Acme",
            "documents": [
                {
                    "id": "doc-1",
                    "file_name": "acme.pdf",
                    "document_type": "invoice",
                    "extracted_data": {"vendor_name": "Acme Corp"},
                    "created_at": "2024-02-10T10:00:00",
                }
            ],
        }

    monkeypatch.setattr(assistant_api, "search_documents", fake_search)
    app.dependency_overrides[get_query_executor] = lambda: StaticExecutor([])

    resp = client.post("/api/v1/assistant/search", json={"query": "Acme invoices"})
    assert resp.status_code == 200
    assert resp.json()["found"] == 1
    assert captured == {"query": "Acme invoices", "organization_id": ORG_ID}


def test_assistant_search_validates_query(client):
    app.dependency_overrides[get_query_executor] = lambda: StaticExecutor([])
    assert client.post("/api/v1/assistant/search", json={"query": ""}).status_code == 422


def test_search_rate_limit(client, monkeypatch):
    from finscan.core.config import Settings

    monkeypatch.setattr(
        "finscan.api.v1.assistant.get_settings",
        lambda: Settings(rate_limit_search_per_min=1),
    )
    app.dependency_overrides[get_query_executor] = lambda: StaticExecutor([])

    async def fake_search(query, organization_id, *, executor):
        return {"success": True, "found": 0, "documents": []}

    monkeypatch.setattr("finscan.api.v1.assistant.search_documents", fake_search)

    assert client.post("/api/v1/assistant/search", json={"query": "a"}).status_code == 200
    assert client.post("/api/v1/assistant/search", json={"query": "b"}).status_code == 429


def _as_owner():
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(
        id=USER_ID, role="OWNER", email="owner@test.local", organization_id=ORG_ID
    )


def test_owner_deletes_row_and_stored_file(client, repository, storage):
    _as_owner()
    document_id = _seed(repository)
    file_path = f"{ORG_ID}/{document_id}/acme.pdf"
    storage.files[file_path] = (b"%PDF", "application/pdf")

    resp = client.delete(f"/api/v1/documents/{document_id}")
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert repository.fetch_document(document_id) is None
    assert file_path not in storage.files
    assert storage.deleted == [file_path]


def test_delete_other_organization_document_is_404(client, repository, storage):
    _as_owner()
    foreign = _seed(repository, OTHER_ORG_ID)

    assert client.delete(f"/api/v1/documents/{foreign}").status_code == 404
    assert repository.fetch_document(foreign) is not None
    assert storage.deleted == []


def test_delete_requires_owner_role(client, repository):
    document_id = _seed(repository)

    resp = client.delete(f"/api/v1/documents/{document_id}")
    assert resp.status_code == 403
    assert repository.fetch_document(document_id) is not None


def test_delete_survives_storage_failure(client, repository, storage, monkeypatch):
    _as_owner()
    document_id = _seed(repository)

    def fail(path):
        raise StorageError(f"Failed to delete {path}")

    monkeypatch.setattr(storage, "delete_file", fail)

    assert client.delete(f"/api/v1/documents/{document_id}").status_code == 200
    assert repository.fetch_document(document_id) is None
