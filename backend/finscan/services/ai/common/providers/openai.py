"""OpenAI provider."""

from __future__ import annotations

import logging
import time
from typing import Any

from .base import BaseProvider, DocumentPart, ProviderResult, fetch_document_base64

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseProvider):
    name = "openai"
    default_model = "gpt-4o-mini-2024-07-18"

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

        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            user_content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
            if document is not None:
                if document.is_image:
                    user_content.append({"type": "image_url", "image_url": {"url": document.url}})
                else:
                    # Chat Completions only takes non-image files as inline data URLs.
                    encoded = await fetch_document_base64(client, document)
                    user_content.append(
                        {
                            "type": "file",
                            "file": {
                                "filename": "document.pdf",
                                "file_data": f"data:{document.mime_type};base64,{encoded}",
                            },
                        }
                    )

            messages: list[dict[str, Any]] = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": user_content})

            body: dict[str, Any] = {
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": messages,
            }
            if json_schema is not None:
                body["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {
                        "name": str(json_schema.get("title") or "result").replace(" ", "_"),
                        "schema": json_schema,
                        "strict": False,
                    },
                }

            resp = await client.post(
                "https://api.openai.com/v1/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        choice = data["choices"][0]
        text = choice["message"].get("content") or ""
        usage = data.get("usage", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            latency_ms=round(elapsed, 2),
        )
