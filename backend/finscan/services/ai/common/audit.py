"""AI audit — one ``audit_logs`` row per inference call made for a document."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from sqlalchemy.orm import Session

from finscan.core.config import get_settings
from finscan.models.document import AuditLog

from .structured import StructuredResult

logger = logging.getLogger(__name__)

# Scope-dependent audit actions. Falls back to "AI_RUN" for unknown scopes.
SCOPE_ACTIONS: dict[str, str] = {
    "classify": "AI_DOCUMENT_CLASSIFIED",
    "extract": "AI_DOCUMENT_EXTRACTED",
}


def log_ai_run(
    db: Session,
    *,
    scope: str,
    document_id: str,
    run: StructuredResult,
    extra_meta: dict[str, Any] | None = None,
) -> None:
    """Add an audit entry for *run* to *db* (caller commits).

    PII: prompt and response are always hashed; raw text is only stored when
    ``AI_DEBUG_STORE_RAW=true``. The parsed output is not copied here since it
    already lives on the document row.
    """
    settings = get_settings()
    provider_result = run.provider_result

    metadata: dict[str, Any] = {
        "scope": scope,
        "provider": provider_result.provider,
        "model": provider_result.model,
        "prompt_tokens": provider_result.prompt_tokens,
        "completion_tokens": provider_result.completion_tokens,
        "latency_ms": provider_result.latency_ms,
        "attempts": run.attempts,
        "prompt_hash": hashlib.sha256(run.prompt_text.encode()).hexdigest(),
        "response_hash": hashlib.sha256(provider_result.raw_text.encode()).hexdigest(),
    }

    if settings.ai_debug_store_raw:
        metadata["prompt_raw"] = run.prompt_text
        metadata["response_raw"] = provider_result.raw_text

    if extra_meta:
        metadata.update(extra_meta)

    db.add(
        AuditLog(
            entity_type="document",
            entity_id=document_id,
            action=SCOPE_ACTIONS.get(scope, "AI_RUN"),
            new_value=None,
            actor_type="SYSTEM",
            actor_id=None,
            audit_meta=metadata,
        )
    )
