"""Google Gemini provider (Generative Language REST API)."""

from __future__ import annotations

import logging
import time
from typing import Any

from .base import BaseProvider, DocumentPart, ProviderResult, fetch_document_base64

logger = logging.getLogger(__name__)

API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider(BaseProvider):
    name = "gemini"
    default_model = "gemini-2.0-flash"

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
            parts: list[dict[str, Any]] = [{"text": prompt}]
            if document is not None:
                parts.append(
                    {
                        "inline_data": {
                            "mime_type": document.mime_type,
                            "data": await fetch_document_base64(client, document),
                        }
                    }
                )

            generation_config: dict[str, Any] = {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            }
            if json_schema is not None:
                generation_config["responseMimeType"] = "application/json"
                generation_config["responseJsonSchema"] = json_schema

            body: dict[str, Any] = {
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": generation_config,
            }
            if system_prompt:
                body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

            resp = await client.post(
                f"{API_BASE}/models/{model}:generateContent",
                headers={
                    "x-goog-api-key": self._api_key,
                    "Content-Type": "application/json",
                },
                json=body,
            )
            resp.raise_for_status()
            data = resp.json()

        elapsed = (time.monotonic() - t0) * 1000
        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise RuntimeError(f"Gemini returned no output ({reason})")
        text = "".join(p.get("text", "") for p in candidates[0].get("content", {}).get("parts", []))
        usage = data.get("usageMetadata", {})

        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=usage.get("promptTokenCount", 0),
            completion_tokens=usage.get("candidatesTokenCount", 0),
            latency_ms=round(elapsed, 2),
        )
