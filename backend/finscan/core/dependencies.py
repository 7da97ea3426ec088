from collections.abc import Generator
from functools import partial
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from finscan.core.config import get_settings
from finscan.core.storage import DocumentStorage
from finscan.core.storage import get_storage as _build_storage
from finscan.services.document_jobs import InProcessJobScheduler, JobScheduler
from finscan.services.document_processing import PROCESS_DOCUMENT_TASK, process_document
from finscan.services.document_repository import DocumentRepository
from finscan.services.query_executor import QueryExecutor, SqlAlchemyQueryExecutor, SupabaseRpcQueryExecutor

settings = get_settings()

engine = None
if settings.database_url:
    connect_args: dict[str, object] = {}

    if settings.database_url.startswith("sqlite"):
        # FastAPI runs sync dependencies in a threadpool.
        connect_args = {"check_same_thread": False, "timeout": 30}

    engine = create_engine(settings.database_url, pool_pre_ping=True, connect_args=connect_args)

    if settings.database_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine else None


def get_db() -> Generator[Session, None, None]:
    if SessionLocal is None:
        raise RuntimeError("DATABASE_URL is not configured")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _session_factory() -> sessionmaker:
    if SessionLocal is None:
        raise RuntimeError("DATABASE_URL is not configured")
    return SessionLocal


def get_document_repository() -> DocumentRepository:
    return DocumentRepository(_session_factory())


def get_document_storage() -> DocumentStorage:
    return _build_storage()


def get_query_executor() -> QueryExecutor:
    if get_settings().search_executor.strip().lower() == "supabase_rpc":
        return SupabaseRpcQueryExecutor.from_settings()
    return SqlAlchemyQueryExecutor(_session_factory())


_scheduler: Optional[InProcessJobScheduler] = None


def build_job_scheduler(repository: DocumentRepository, storage: DocumentStorage) -> InProcessJobScheduler:
    scheduler = InProcessJobScheduler()
    scheduler.register(
        PROCESS_DOCUMENT_TASK,
        partial(process_document, repository=repository, storage=storage),
    )
    return scheduler


def get_job_scheduler() -> JobScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = build_job_scheduler(get_document_repository(), get_document_storage())
    return _scheduler


async def shutdown_job_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        await _scheduler.shutdown()
        _scheduler = None
