"""Document classification + extraction pipeline (router, then extractor).

Two sequential structured calls. A document classified ``unknown`` stops after
the first call; no extraction call is made for it. The pipeline never retries
and never converts a failure into ``unknown``: callers get an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from pydantic import BaseModel

from finscan.core.config import get_settings

from ..common import router as ai_router
from ..common.providers import create_document_part
from ..common.structured import StructuredResult, generate_structured
from .contracts import EXTRACTION_SCHEMAS, ClassificationResult, DocumentType
from .prompts import (
    EXTRACTION_PROMPTS,
    EXTRACTION_USER_PROMPT,
    ROUTER_SYSTEM_PROMPT,
    ROUTER_USER_PROMPT,
)

logger = logging.getLogger(__name__)


class DocumentExtractionError(RuntimeError):
    """Base class for pipeline failures."""


class ClassificationError(DocumentExtractionError):
    pass


class ExtractionError(DocumentExtractionError):
    def __init__(self, document_type: str, message: str) -> None:
        self.document_type = document_type
        super().__init__(message)


@dataclass
class ExtractionOutcome:
    classification: ClassificationResult
    extracted_data: BaseModel | None
    model_identifier: str
    runs: list[tuple[str, StructuredResult]] = field(default_factory=list)

    @property
    def document_type(self) -> DocumentType:
        return self.classification.document_type


async def extract_document(
    content_url: str,
    mime_type: str | None,
    *,
    config: ai_router.ResolvedConfig | None = None,
) -> ExtractionOutcome:
    """Classify the document at *content_url*, then extract its fields.

    Raises ``ClassificationError`` when the router call fails and
    ``ExtractionError`` when the type-specific extraction call fails.
    """
    config = config or ai_router.resolve("document_extract")
    document = create_document_part(content_url, mime_type)
    runs: list[tuple[str, StructuredResult]] = []

    # Step 1: classify
    try:
        routed = await generate_structured(
            config,
            system_prompt=ROUTER_SYSTEM_PROMPT,
            prompt=ROUTER_USER_PROMPT,
            schema=ClassificationResult,
            document=document,
        )
    except Exception as exc:
        logger.warning("Document classification failed: %s", exc)
        raise ClassificationError(f"Document classification failed: {exc}") from exc

    runs.append(("classify", routed))
    classification = routed.output
    logger.info(
        "Classified document as %s (confidence=%.2f)",
        classification.document_type.value,
        classification.confidence,
    )

    # Step 2: unknown short-circuits, no extraction call
    if classification.document_type == DocumentType.UNKNOWN:
        return ExtractionOutcome(
            classification=classification,
            extracted_data=None,
            model_identifier=config.model_identifier,
            runs=runs,
        )

    # Advisory only: the router prompt asks the model to self-apply this bar.
    if classification.confidence < get_settings().ai_router_min_confidence:
        logger.warning(
            "Router returned %s below confidence threshold (%.2f); extracting anyway",
            classification.document_type.value,
            classification.confidence,
        )

    # Step 3: route to the matching extractor
    document_type = classification.document_type
    try:
        extracted = await generate_structured(
            config,
            system_prompt=EXTRACTION_PROMPTS[document_type],
            prompt=EXTRACTION_USER_PROMPT,
            schema=EXTRACTION_SCHEMAS[document_type],
            document=document,
        )
    except Exception as exc:
        logger.warning("Extraction failed for %s: %s", document_type.value, exc)
        raise ExtractionError(
            document_type.value,
            f"Failed to extract {document_type.value} data: {exc}",
        ) from exc

    runs.append(("extract", extracted))

    return ExtractionOutcome(
        classification=classification,
        extracted_data=extracted.output,
        model_identifier=config.model_identifier,
        runs=runs,
    )
