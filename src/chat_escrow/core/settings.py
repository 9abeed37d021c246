"""Application settings and configuration.

This module defines all configuration options for the chat escrow service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CLASSIFIER_PROMPT = (
    "You are a content-safety reviewer for a private chat between two consenting "
    "adult partners. Consensual adult intimacy between the partners is allowed. "
    "Flag content involving minors, non-consent, self-harm, threats of violence, "
    "harassment, or illegal activity. Respond only with a JSON object of the form "
    '{"status": "safe" | "flagged", "reason": string | null, "category": string}.'
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Chat Escrow", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Bearer credential verification (tokens are issued elsewhere)
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    jwt_audience: str | None = Field(default=None, alias="JWT_AUDIENCE")

    # Database configuration
    database_url: str = Field(default="sqlite:///./chat_escrow.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Escrow (admin) private keys. ADMIN_KEYS_JSON maps key-id -> private JWK;
    # ADMIN_PRIVATE_KEY_JWK is the legacy single key used as a fallback.
    admin_keys_json: str | None = Field(default=None, alias="ADMIN_KEYS_JSON")
    admin_private_key_jwk: str | None = Field(default=None, alias="ADMIN_PRIVATE_KEY_JWK")

    # Chat media blob store
    media_store_backend: str = Field(default="storage_api", alias="MEDIA_STORE_BACKEND")
    storage_url: str | None = Field(default=None, alias="STORAGE_URL")
    storage_service_key: str | None = Field(default=None, alias="STORAGE_SERVICE_KEY")
    media_bucket: str = Field(default="chat-media", alias="MEDIA_BUCKET")
    media_root: str = Field(default="./media", alias="MEDIA_ROOT")
    storage_http_timeout_seconds: float = Field(
        default=30.0,
        alias="STORAGE_HTTP_TIMEOUT_SECONDS",
    )

    # External safety review (OpenRouter-compatible chat completions API)
    classifier_enabled: bool = Field(default=True, alias="CLASSIFIER_ENABLED")
    openrouter_api_key: str | None = Field(default=None, alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    classifier_model: str = Field(default="openai/gpt-4o", alias="CLASSIFIER_MODEL")
    classifier_prompt: str = Field(default=DEFAULT_CLASSIFIER_PROMPT, alias="CLASSIFIER_PROMPT")
    classifier_http_timeout_seconds: float = Field(
        default=60.0,
        alias="CLASSIFIER_HTTP_TIMEOUT_SECONDS",
    )
    classifier_app_url: str | None = Field(default=None, alias="CLASSIFIER_APP_URL")
    classifier_app_title: str | None = Field(default=None, alias="CLASSIFIER_APP_TITLE")

    # Heuristic pre-filter (skips the AI call for low-risk messages)
    heuristics_enabled: bool = Field(default=False, alias="HEURISTICS_ENABLED")
    heuristic_min_text_length: int = Field(default=12, alias="HEURISTIC_MIN_TEXT_LENGTH")
    heuristic_whitelist_max_length: int = Field(
        default=30,
        alias="HEURISTIC_WHITELIST_MAX_LENGTH",
    )
    heuristic_skip_if_no_alnum: bool = Field(default=True, alias="HEURISTIC_SKIP_IF_NO_ALNUM")
    heuristic_skip_media_without_text: bool = Field(
        default=False,
        alias="HEURISTIC_SKIP_MEDIA_WITHOUT_TEXT",
    )
    heuristic_record_reason: bool = Field(default=False, alias="HEURISTIC_RECORD_REASON")
    heuristic_use_default_whitelist: bool = Field(
        default=True,
        alias="HEURISTIC_USE_DEFAULT_WHITELIST",
    )
    heuristic_use_default_keywords: bool = Field(
        default=True,
        alias="HEURISTIC_USE_DEFAULT_KEYWORDS",
    )
    # Comma- or newline-separated lists
    heuristic_whitelist: str = Field(default="", alias="HEURISTIC_WHITELIST")
    heuristic_keyword_triggers: str = Field(default="", alias="HEURISTIC_KEYWORD_TRIGGERS")

    # E2EE -> plaintext migration batches
    migration_default_batch_size: int = Field(default=50, alias="MIGRATION_DEFAULT_BATCH_SIZE")
    migration_max_batch_size: int = Field(default=100, alias="MIGRATION_MAX_BATCH_SIZE")

    # CORS configuration for operator dashboards
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["authorization", "content-type", "apikey", "x-client-info"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling such as Alembic."""
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url


settings = Settings()  # type: ignore[call-arg]
