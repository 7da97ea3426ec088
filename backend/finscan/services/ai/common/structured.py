"""Structured-output calls: prompt a provider and validate its JSON against a contract.

This is the inference collaborator's own retry loop: output that is not JSON
or fails validation is re-requested up to ``config.output_retries`` times.
Transport errors (``httpx`` exceptions, timeouts) are not retried here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel

from finscan.services.ai.document_extract.contracts import (
    FieldError,
    SchemaValidationError,
    validate_contract,
)

from .json_tools import extract_json_object
from .providers.base import DocumentPart, ProviderResult
from .router import ResolvedConfig

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class StructuredOutputError(RuntimeError):
    """The model never produced output matching the requested schema."""

    def __init__(self, schema_name: str, attempts: int, errors: list[FieldError]) -> None:
        self.schema_name = schema_name
        self.attempts = attempts
        self.errors = errors
        detail = "; ".join(str(e) for e in errors[:3]) or "no JSON object in response"
        super().__init__(f"Model output did not match {schema_name} after {attempts} attempt(s): {detail}")


@dataclass
class StructuredResult(Generic[T]):
    output: T
    provider_result: ProviderResult
    prompt_text: str
    attempts: int


async def generate_structured(
    config: ResolvedConfig,
    *,
    system_prompt: str,
    prompt: str,
    schema: type[T],
    document: DocumentPart | None = None,
) -> StructuredResult[T]:
    json_schema = schema.model_json_schema()
    schema_name = json_schema.get("title") or schema.__name__
    max_attempts = config.output_retries + 1
    prompt_text = f"{system_prompt}\n\n{prompt}"

    errors: list[FieldError] = []
    attempts = 0
    while attempts < max_attempts:
        attempts += 1
        result = await config.provider.generate(
            prompt,
            system_prompt=system_prompt,
            document=document,
            json_schema=json_schema,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout_seconds=config.timeout_seconds,
        )

        parsed = extract_json_object(result.raw_text)
        if parsed is None:
            logger.warning("Attempt %d: no JSON object in %s response", attempts, schema_name)
            errors = [FieldError(path="", message="response is not a JSON object")]
            continue

        try:
            output = validate_contract(schema, parsed)
        except SchemaValidationError as exc:
            logger.warning("Attempt %d: %s", attempts, exc)
            errors = exc.errors
            continue

        return StructuredResult(
            output=output,
            provider_result=result,
            prompt_text=prompt_text,
            attempts=attempts,
        )

    raise StructuredOutputError(schema_name, attempts, errors)
