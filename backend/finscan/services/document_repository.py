from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from finscan.models.document import Document

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "document_type",
        "extracted_data",
        "extraction_confidence",
        "ai_model",
        "error_message",
        "run_id",
        "processed_at",
    }
)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class DocumentRepository:
    """Database collaborator for the processing job and the API.

    Every method runs in its own short session and commits before returning,
    so a write is durable once the call returns.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def session(self):
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def fetch_document(self, document_id: str) -> Optional[Document]:
        doc_uuid = _as_uuid(document_id)
        if doc_uuid is None:
            return None
        with self.session() as db:
            doc = db.get(Document, doc_uuid)
            if doc is not None:
                db.expunge(doc)
            return doc

    def fetch_for_organization(self, document_id: str, organization_id: str) -> Optional[Document]:
        doc = self.fetch_document(document_id)
        if doc is None or str(doc.organization_id) != str(organization_id):
            return None
        return doc

    def update_document(self, document_id: str, **fields: Any) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")
        with self.session() as db:
            doc = db.get(Document, _as_uuid(document_id))
            if doc is None:
                raise LookupError(f"Document not found: {document_id}")
            for key, value in fields.items():
                setattr(doc, key, value)
            doc.updated_at = now_utc()

    def create_document(
        self,
        *,
        document_id: str,
        organization_id: str,
        uploaded_by: Optional[str],
        file_name: str,
        file_path: str,
        file_size: int,
        mime_type: str,
    ) -> Document:
        with self.session() as db:
            doc = Document(
                id=_as_uuid(document_id),
                organization_id=_as_uuid(organization_id),
                uploaded_by=_as_uuid(uploaded_by) if uploaded_by else None,
                file_name=file_name,
                file_path=file_path,
                file_size=file_size,
                mime_type=mime_type,
                status="pending",
            )
            db.add(doc)
            db.flush()
            db.refresh(doc)
            db.expunge(doc)
            return doc

    def delete_document(self, document_id: str) -> bool:
        with self.session() as db:
            doc = db.get(Document, _as_uuid(document_id))
            if doc is None:
                return False
            db.delete(doc)
            return True

    def list_documents(self, organization_id: str, *, limit: int = 100) -> list[Document]:
        org_uuid = _as_uuid(organization_id)
        if org_uuid is None:
            return []
        with self.session() as db:
            rows = (
                db.execute(
                    select(Document)
                    .where(Document.organization_id == org_uuid)
                    .order_by(Document.created_at.desc())
                    .limit(int(max(1, limit)))
                )
                .scalars()
                .all()
            )
            for row in rows:
                db.expunge(row)
            return list(rows)

    def record_ai_runs(self, document_id: str, runs: Iterable[tuple[str, Any]]) -> None:
        from finscan.services.ai.common.audit import log_ai_run

        with self.session() as db:
            for scope, run in runs:
                log_ai_run(db, scope=scope, document_id=document_id, run=run)
