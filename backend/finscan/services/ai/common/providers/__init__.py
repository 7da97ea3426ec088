"""Provider factory — returns the right provider instance or falls back to mock."""

from __future__ import annotations

import logging

from finscan.core.config import get_settings

from .base import BaseProvider, DocumentPart, ProviderResult, create_document_part
from .mock import MockProvider

logger = logging.getLogger(__name__)

__all__ = [
    "get_provider",
    "BaseProvider",
    "DocumentPart",
    "ProviderResult",
    "MockProvider",
    "create_document_part",
]


def get_provider(provider_name: str) -> BaseProvider:
    """Return a provider instance for *provider_name*.

    If the requested provider is not in the allowlist, has no API key,
    or is unknown, we fall back to ``MockProvider`` (which only ever
    classifies documents as ``unknown``).
    """
    settings = get_settings()
    name = provider_name.lower().strip()

    if name not in settings.ai_allowed_providers:
        logger.warning("Provider %r not in allowlist – falling back to mock", name)
        return MockProvider()

    if name == "mock":
        return MockProvider()

    if name == "gemini":
        if not settings.google_api_key:
            logger.warning("GOOGLE_API_KEY not set – falling back to mock")
            return MockProvider()
        from .gemini import GeminiProvider

        return GeminiProvider(api_key=settings.google_api_key)

    if name == "claude":
        if not settings.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY not set – falling back to mock")
            return MockProvider()
        from .claude import ClaudeProvider

        return ClaudeProvider(api_key=settings.anthropic_api_key)

    if name == "openai":
        if not settings.openai_api_key:
            logger.warning("OPENAI_API_KEY not set – falling back to mock")
            return MockProvider()
        from .openai import OpenAIProvider

        return OpenAIProvider(api_key=settings.openai_api_key)

    logger.warning("Unknown provider %r – falling back to mock", name)
    return MockProvider()
