"""AI Router — resolves provider + model with override > ENV > mock-fallback chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from finscan.core.config import get_settings

from .providers import BaseProvider, get_provider

logger = logging.getLogger(__name__)

SCOPES = ("document_extract", "document_search")


@dataclass(frozen=True)
class ResolvedConfig:
    """Final resolved provider + model after the override chain."""

    provider: BaseProvider
    model: str
    temperature: float = 0.1
    max_tokens: int = 8192
    timeout_seconds: float = 120.0
    output_retries: int = 2

    @property
    def model_identifier(self) -> str:
        """``provider:model`` string recorded per document for auditability."""
        return f"{self.provider.name}:{self.model or self.provider.default_model}"


def resolve(
    scope: str,
    *,
    override_provider: str | None = None,
    override_model: str | None = None,
) -> ResolvedConfig:
    """Resolve provider + model for a given *scope*.

    Resolution chain (first non-empty wins):
      1. ``override_provider`` / ``override_model`` (only when
         ``enable_ai_overrides=True``).
      2. ENV scope-specific: ``AI_EXTRACT_PROVIDER`` / ``AI_EXTRACT_MODEL`` for
         ``document_extract``, ``AI_SEARCH_PROVIDER`` / ``AI_SEARCH_MODEL`` for
         ``document_search``.
      3. ``"mock"`` with empty model.

    Model validation: if the resolved model is not in the allowlist for
    that provider, we fall back to the first allowed model.
    """
    if scope not in SCOPES:
        raise ValueError(f"Unknown AI scope {scope!r}")

    settings = get_settings()

    # --- 1. Determine provider name ---
    provider_name = ""

    if settings.enable_ai_overrides and override_provider:
        provider_name = override_provider.lower().strip()

    if not provider_name:
        provider_name = (
            settings.ai_extract_provider if scope == "document_extract" else settings.ai_search_provider
        ).lower().strip()

    if not provider_name:
        provider_name = "mock"

    # --- 2. Determine model ---
    model = ""

    if settings.enable_ai_overrides and override_model:
        model = override_model.strip()

    if not model:
        model = (settings.ai_extract_model if scope == "document_extract" else settings.ai_search_model).strip()

    # --- 3. Build provider instance (may fall back to mock) ---
    provider = get_provider(provider_name)
    if provider.name == "mock":
        model = ""

    # --- 4. Validate model against allowlist ---
    allowed_models = settings.ai_allowed_models.get(provider.name, [])
    if allowed_models and model and model not in allowed_models:
        logger.warning(
            "Model %r not in allowlist for %r — using first allowed: %r",
            model,
            provider.name,
            allowed_models[0],
        )
        model = allowed_models[0]

    if allowed_models and not model:
        model = allowed_models[0]

    timeout = settings.ai_timeout_seconds
    if scope == "document_search":
        timeout = settings.ai_search_timeout_seconds

    return ResolvedConfig(
        provider=provider,
        model=model,
        temperature=settings.ai_temperature,
        max_tokens=settings.ai_max_tokens,
        timeout_seconds=timeout,
        output_retries=settings.ai_structured_output_retries,
    )
