from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL (message log + provider records)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "widget_user"
    postgres_password: str = "changeme"
    postgres_db: str = "chat_widget"

    @property
    def postgres_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis: shared rate-limit windows and model catalogue cache.
    # Empty string keeps that state in-process (single instance only).
    redis_url: str = ""

    # Encryption for provider API keys
    fernet_key: str = ""

    # App
    app_name: str = "Chat Widget"
    app_url: str = "http://localhost:8000"  # sent to OpenRouter as HTTP-Referer
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Chat rate limiting (per client address + session)
    chat_rate_limit: int = 30
    chat_rate_window_seconds: int = 60

    # Admin endpoints (test-connection / model discovery), slowapi syntax
    admin_rate_limit: str = "20/minute"

    # Conversation context
    context_max_turns: int = 10

    # Model discovery cache
    model_catalog_ttl_seconds: int = 3600

    # Synthesized streaming for vendors without a native stream
    stream_chunk_size: int = 10
    stream_chunk_delay_seconds: float = 0.05

    # Outbound HTTP retry policy
    http_max_attempts: int = 3
    http_retry_delay_seconds: float = 1.0

    # Vendor keys for ad-hoc / environment-backed provider configs
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    gemini_api_key: str = ""
    mistral_api_key: str = ""
    grok_api_key: str = ""
    groq_api_key: str = ""
    openrouter_api_key: str = ""
    deepseek_api_key: str = ""
    huggingface_api_key: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if not settings.fernet_key:
        errors.append(
            'FERNET_KEY must be set (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")'
        )

    if settings.chat_rate_limit < 1 or settings.chat_rate_window_seconds < 1:
        errors.append("CHAT_RATE_LIMIT and CHAT_RATE_WINDOW_SECONDS must be positive")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
