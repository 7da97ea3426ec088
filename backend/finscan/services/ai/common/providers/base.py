"""Abstract base for all AI providers."""

from __future__ import annotations

import abc
import base64
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DocumentPart:
    """A document handed to a multimodal model by reference URL."""

    url: str
    mime_type: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")


def create_document_part(url: str, mime_type: str | None) -> DocumentPart:
    return DocumentPart(url=url, mime_type=(mime_type or "application/pdf").strip().lower())


async def fetch_document_base64(client: Any, document: DocumentPart) -> str:
    """Download *document* with an ``httpx.AsyncClient`` and return base64 text.

    Used by providers whose APIs only accept inline bytes for non-image files.
    """
    resp = await client.get(document.url)
    resp.raise_for_status()
    return base64.b64encode(resp.content).decode("ascii")


@dataclass(frozen=True)
class ProviderResult:
    """Immutable result returned by every provider."""

    raw_text: str
    model: str
    provider: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0


class BaseProvider(abc.ABC):
    """Contract that every AI provider must implement."""

    name: str = "base"
    default_model: str = ""

    @abc.abstractmethod
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
        """Send *prompt* (plus optional *document*) and return a ``ProviderResult``.

        When *json_schema* is given the provider must ask the model for a single
        JSON object matching it, using native structured output where the API
        has one.
        """
