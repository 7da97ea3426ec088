"""Mock provider — deterministic responses for tests and fallback.

Without scripted responses the mock classifies every document as ``unknown``,
so a missing API key never fabricates extracted data.
"""

from __future__ import annotations

import json
import time
from collections import deque
from dataclasses import dataclass
from typing import Any

from .base import BaseProvider, DocumentPart, ProviderResult

DEFAULT_RESPONSES: dict[str, dict[str, Any]] = {
    "DocumentClassification": {
        "reasoning": "mock provider: no model configured",
        "documentType": "unknown",
        "confidence": 0.0,
    },
}


@dataclass(frozen=True)
class MockCall:
    prompt: str
    system_prompt: str | None
    document: DocumentPart | None
    json_schema: dict[str, Any] | None
    model: str


class MockProvider(BaseProvider):
    name = "mock"
    default_model = "mock-v1"

    def __init__(self, responses: list[Any] | None = None) -> None:
        # Each scripted item is a dict/list (serialized to JSON), a raw string,
        # or an exception instance to raise.
        self._responses: deque[Any] = deque(responses or [])
        self.calls: list[MockCall] = []

    def queue(self, *responses: Any) -> None:
        self._responses.extend(responses)

    def _next_text(self, json_schema: dict[str, Any] | None) -> str:
        if self._responses:
            item = self._responses.popleft()
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, str):
                return item
            return json.dumps(item)
        title = (json_schema or {}).get("title", "")
        return json.dumps(DEFAULT_RESPONSES.get(title, {}))

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
        t0 = time.monotonic()
        model = model or self.default_model
        self.calls.append(
            MockCall(
                prompt=prompt,
                system_prompt=system_prompt,
                document=document,
                json_schema=json_schema,
                model=model,
            )
        )
        text = self._next_text(json_schema)
        elapsed = (time.monotonic() - t0) * 1000
        return ProviderResult(
            raw_text=text,
            model=model,
            provider=self.name,
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(text.split()),
            latency_ms=round(elapsed, 2),
        )
