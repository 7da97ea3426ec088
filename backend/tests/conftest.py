from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from finscan.core.config import get_settings
from finscan.core.storage import DocumentStorage, StorageError
from finscan.models.document import Base
from finscan.services.document_repository import DocumentRepository


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Some tests mutate env vars and clear the settings cache. Ensure we don't leak
    # a cached Settings instance across tests.
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class InMemoryStorage(DocumentStorage):
    """Blob store double: keeps uploads in a dict, signs URLs deterministically."""

    def __init__(self) -> None:
        self.files: dict[str, tuple[bytes, Optional[str]]] = {}
        self.deleted: list[str] = []
        self.fail_signed_url = False
        self.fail_upload = False

    def upload_file(self, path: str, content: bytes, content_type: Optional[str]) -> None:
        if self.fail_upload:
            raise StorageError(f"Failed to upload {path}")
        self.files[path] = (content, content_type)

    def get_signed_url(self, path: str, ttl_seconds: int) -> str:
        if self.fail_signed_url:
            raise StorageError("Failed to get signed URL")
        return f"https://storage.test/{path}?ttl={ttl_seconds}"

    def delete_file(self, path: str) -> None:
        self.files.pop(path, None)
        self.deleted.append(path)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return DocumentRepository(session_factory)


@pytest.fixture
def storage():
    return InMemoryStorage()
