from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


def _parse_models_value(value: str) -> dict[str, list[str]]:
    """Parse ``AI_ALLOWED_MODELS``.

    Accepts JSON (``{"gemini": ["gemini-2.0-flash"]}``) or the compact
    ``provider:model,provider:model`` form.
    """
    raw = (value or "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return {str(k).strip().lower(): _parse_list_value(json.dumps(v)) for k, v in parsed.items()}

    models: dict[str, list[str]] = {}
    for item in _parse_list_value(raw):
        if ":" not in item:
            continue
        provider, model = item.split(":", 1)
        models.setdefault(provider.strip().lower(), []).append(model.strip())
    return models


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        validate_by_name=True,
        populate_by_name=True,
    )
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"
    database_url: str = ""

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    # --- Storage / upload intake ---
    storage_bucket: str = "documents"
    signed_url_ttl_seconds: int = Field(default=3600, ge=60)
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    allowed_mime_types: list[str] = Field(
        default_factory=lambda: [
            "application/pdf",
            "image/jpeg",
            "image/jpg",
            "image/png",
        ]
    )

    # --- AI ---
    google_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("GOOGLE_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY"),
    )
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    ai_allowed_providers_raw: str = Field(
        default="gemini,claude,openai,mock",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    ai_allowed_models_raw: str = Field(
        default="",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS"),
    )
    enable_ai_overrides: bool = False

    ai_extract_provider: str = "gemini"
    ai_extract_model: str = "gemini-2.0-flash"
    ai_search_provider: str = "gemini"
    ai_search_model: str = Field(
        default="gemini-2.5-flash",
        validation_alias=AliasChoices("AI_SEARCH_MODEL", "AI_MODEL"),
    )

    ai_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    ai_max_tokens: int = Field(default=8192, ge=1)
    ai_timeout_seconds: float = Field(default=120.0, gt=0)
    ai_search_timeout_seconds: float = Field(default=30.0, gt=0)
    ai_structured_output_retries: int = Field(default=2, ge=0, le=5)
    ai_router_min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    ai_debug_store_raw: bool = False

    # --- Jobs ---
    job_max_attempts: int = Field(default=3, ge=1, le=20)
    job_backoff_base_seconds: float = Field(default=5.0, ge=0.0)
    job_backoff_max_seconds: float = Field(default=300.0, ge=0.0)
    job_retained_runs: int = Field(default=1000, ge=1)

    # --- Search ---
    # "sqlalchemy" runs the guarded query directly; "supabase_rpc" calls execute_document_query
    search_executor: str = "sqlalchemy"

    # --- Rate limits (per organization, per minute; 0 disables) ---
    rate_limit_search_per_min: int = Field(default=30, ge=0)
    rate_limit_upload_per_min: int = Field(default=60, ge=0)

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "DELETE",
        "OPTIONS",
    ])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        "allowed_mime_types",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return _parse_list_value(value)
        return value

    @property
    def ai_allowed_providers(self) -> list[str]:
        """Allowlisted provider names; ``mock`` is always present."""
        providers = [p.lower() for p in _parse_list_value(self.ai_allowed_providers_raw)]
        if "mock" not in providers:
            providers.append("mock")
        return providers

    @property
    def ai_allowed_models(self) -> dict[str, list[str]]:
        return _parse_models_value(self.ai_allowed_models_raw)


@lru_cache

def get_settings() -> Settings:
    return Settings()
