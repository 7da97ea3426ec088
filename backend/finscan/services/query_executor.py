"""Guarded read-only query execution for the document search tool.

The executor is the authoritative guard. Whatever SQL it receives, it only
runs a single read statement inside a read-only transaction, and the statement
is evaluated against a ``documents`` CTE holding only the completed documents
of the caller's organization. The CTE shadows the table, so the query cannot
read other tenants' rows however its filters are written.
"""

from __future__ import annotations

import abc
import json
import logging
import re
import uuid
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from finscan.core.config import get_settings

logger = logging.getLogger(__name__)

_LEADING_KEYWORD_RE = re.compile(r"^\s*(select|with)\b", re.IGNORECASE)
_LEADING_WITH_RE = re.compile(r"^\s*with\s+(recursive\s+)?", re.IGNORECASE)
_FORBIDDEN_RE = re.compile(
    r"\b(insert|update|delete|merge|drop|alter|truncate|create|grant|revoke|copy|vacuum|analyze|"
    r"reindex|cluster|comment|call|do|execute|prepare|listen|notify|lock|set|reset|attach|detach|pragma)\b",
    re.IGNORECASE,
)
# Relations and functions that reach data outside the scoped documents CTE.
_FORBIDDEN_REFERENCE_RE = re.compile(
    r"(\.\s*documents\b|\b(audit_logs|information_schema|pg_\w+|sqlite_\w+|dblink\w*|lo_\w+|"
    r"\w+_to_xml\w*|current_setting|set_config)\b)",
    re.IGNORECASE,
)
_STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
_QUOTE_CHARS_RE = re.compile(r"[\"`\[\]]")

_TABLE_BY_DIALECT = {"postgresql": "public.documents", "sqlite": "main.documents"}


class QueryExecutionError(RuntimeError):
    pass


def check_read_only(sql: str) -> str:
    """Return *sql* stripped, or raise ``QueryExecutionError`` if it is not a single read."""
    statement = (sql or "").strip()
    if not statement:
        raise QueryExecutionError("Empty query")
    if not _LEADING_KEYWORD_RE.match(statement):
        raise QueryExecutionError("Only SELECT queries are allowed")
    # Keywords inside string literals (e.g. ILIKE '%update%') are data, not SQL.
    code = _STRING_LITERAL_RE.sub("''", statement)
    if ";" in code:
        raise QueryExecutionError("Multiple statements are not allowed")
    if "--" in code or "/*" in code:
        raise QueryExecutionError("SQL comments are not allowed")
    match = _FORBIDDEN_RE.search(code)
    if match:
        raise QueryExecutionError(f"Statement keyword not allowed: {match.group(1).upper()}")
    match = _FORBIDDEN_REFERENCE_RE.search(_QUOTE_CHARS_RE.sub("", code))
    if match:
        raise QueryExecutionError(f"Reference not allowed: {match.group(0).strip()}")
    return statement


def scope_to_organization(statement: str, *, table: str, org_param: str = ":organization_id") -> str:
    """Prefix *statement* with a ``documents`` CTE restricted to one organization.

    A leading ``WITH`` clause of *statement* is merged into the prefix so the
    statement runs unchanged, including its own ``ORDER BY``.
    """
    scoped_cte = (
        f"documents AS (SELECT * FROM {table} AS scoped_documents "
        f"WHERE scoped_documents.organization_id = {org_param} AND scoped_documents.status = 'completed')"
    )
    match = _LEADING_WITH_RE.match(statement)
    if match is None:
        return f"WITH {scoped_cte} {statement}"
    recursive = "RECURSIVE " if match.group(1) else ""
    return f"WITH {recursive}{scoped_cte}, {statement[match.end():]}"


def _json_safe(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def _normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    out = {key: _json_safe(value) for key, value in row.items()}
    data = out.get("extracted_data")
    if isinstance(data, str):
        try:
            out["extracted_data"] = json.loads(data)
        except ValueError:
            pass
    return out


class QueryExecutor(abc.ABC):
    @abc.abstractmethod
    def execute_read_query(self, sql: str, *, organization_id: str) -> list[dict[str, Any]]:
        """Run *sql* read-only, scoped to *organization_id*; raise ``QueryExecutionError``."""


class SqlAlchemyQueryExecutor(QueryExecutor):
    """Runs the guarded query directly over a SQLAlchemy session."""

    def __init__(self, session_factory: Callable[[], Session], *, max_rows: int = 200) -> None:
        self._session_factory = session_factory
        self._max_rows = max_rows

    def execute_read_query(self, sql: str, *, organization_id: str) -> list[dict[str, Any]]:
        statement = check_read_only(sql)
        try:
            org_uuid = uuid.UUID(str(organization_id))
        except ValueError as exc:
            raise QueryExecutionError("Invalid organization id") from exc

        db = self._session_factory()
        dialect = db.get_bind().dialect.name
        table = _TABLE_BY_DIALECT.get(dialect)
        if table is None:
            db.close()
            raise QueryExecutionError(f"Unsupported database dialect: {dialect}")
        scoped = scope_to_organization(statement, table=table)
        org_param: Any = org_uuid if dialect == "postgresql" else str(org_uuid)
        try:
            if dialect == "postgresql":
                db.execute(text("SET TRANSACTION READ ONLY"))
            elif dialect == "sqlite":
                db.execute(text("PRAGMA query_only = ON"))
            result = db.execute(text(scoped), {"organization_id": org_param})
            rows = [_normalize_row(dict(r)) for r in result.mappings().fetchmany(self._max_rows)]
        except Exception as exc:
            logger.warning("Search query rejected: %s", exc)
            raise QueryExecutionError(str(getattr(exc, "orig", None) or exc)) from exc
        finally:
            db.rollback()
            if dialect == "sqlite":
                db.execute(text("PRAGMA query_only = OFF"))
            db.close()
        return rows


class SupabaseRpcQueryExecutor(QueryExecutor):
    """Calls the ``execute_document_query`` database function (see migrations)."""

    def __init__(self, client) -> None:
        self._client = client

    @classmethod
    def from_settings(cls) -> "SupabaseRpcQueryExecutor":
        from supabase import create_client

        settings = get_settings()
        key = settings.supabase_service_role_key or settings.supabase_key
        if not settings.supabase_url or not key:
            raise RuntimeError("Supabase credentials are not configured")
        return cls(create_client(settings.supabase_url, key))

    def execute_read_query(self, sql: str, *, organization_id: str) -> list[dict[str, Any]]:
        statement = check_read_only(sql)
        try:
            response = self._client.rpc(
                "execute_document_query",
                {"query_text": statement, "org_id": str(organization_id)},
            ).execute()
        except Exception as exc:
            logger.warning("execute_document_query RPC error: %s", exc)
            raise QueryExecutionError(getattr(exc, "message", None) or str(exc)) from exc
        data = response.data or []
        if not isinstance(data, list):
            raise QueryExecutionError("Unexpected query result shape")
        return [_normalize_row(row) for row in data]
