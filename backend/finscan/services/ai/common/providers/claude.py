"""Anthropic / Claude provider."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from .base import BaseProvider, DocumentPart, ProviderResult

logger = logging.getLogger(__name__)


def _document_block(document: DocumentPart) -> dict[str, Any]:
    block_type = "image" if document.is_image else "document"
    return {"type": block_type, "source": {"type": "url", "url": document.url}}


class ClaudeProvider(BaseProvider):
    name = "claude"
    default_model = "claude-3-5-haiku-20241022"

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        document: DocumentPart | None = None,
        json_schema: dict[str, Any] | None = None,
        model: str = "",
        temperature: float = 0.1,
        max_tokens: int = 4096,
        timeout_seconds: float = 60.0,
    ) -> ProviderResult:
        import httpx

        model = model or self.default_model
        t0 = time.monotonic()

        system = system_prompt or ""
        if json_schema is not None:
            # Messages API has no response schema parameter; pin the contract in the system prompt.
            system += (
                "\n\nRespond ONLY with a single JSON object, no markdown, matching this JSON Schema:\n"
                + json.dumps(json_schema)
            )

        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        if document is not None:
            content.append(_document_block(document))

        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if system.strip():
            body["system"] = system.strip()

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            resp = await client.post(
                "https://api.anthropic.com/v1/messages",
                headers={
                    "x-api-key": self._api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        text = "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")
        usage = data.get("usage", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("input_tokens", 0),
            completion_tokens=usage.get("output_tokens", 0),
            latency_ms=round(elapsed, 2),
        )
