"""Application configuration using Pydantic BaseSettings."""

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file="../.env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:5173", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3001, alias="PORT")
    backend_public_url: str = Field(default="http://localhost:3001", alias="BACKEND_PUBLIC_URL")

    # Kie AI task provider
    kie_api_key: str = Field(default="", alias="KIE_AI_API_KEY")
    kie_base_url: str = Field(default="https://api.kie.ai", alias="KIE_AI_BASE_URL")
    kie_model: str = Field(default="nano-banana-pro", alias="KIE_MODEL")
    kie_poll_interval_seconds: float = Field(default=10, alias="KIE_POLL_INTERVAL_SECONDS")
    kie_poll_timeout_seconds: float = Field(default=600, alias="KIE_POLL_TIMEOUT_SECONDS")

    # Supabase Storage
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_service_role_key: str = Field(default="", alias="SUPABASE_SERVICE_ROLE_KEY")
    storage_bucket: str = Field(default="composit-assets", alias="SUPABASE_STORAGE_BUCKET")
    # Provider fetches can take minutes, so input URLs outlive download links
    provider_signed_url_ttl_seconds: int = Field(
        default=3600, alias="PROVIDER_SIGNED_URL_TTL_SECONDS"
    )
    download_url_ttl_seconds: int = Field(default=300, alias="DOWNLOAD_URL_TTL_SECONDS")

    # Generation queue and worker pool
    worker_concurrency: int = Field(default=3, alias="WORKER_CONCURRENCY")
    queue_max_attempts: int = Field(default=3, alias="QUEUE_MAX_ATTEMPTS")
    queue_backoff_seconds: float = Field(default=10, alias="QUEUE_BACKOFF_SECONDS")
    queue_poll_interval_seconds: float = Field(default=1, alias="QUEUE_POLL_INTERVAL_SECONDS")

    # Rate limits (per API process)
    rate_limit_generate_per_hour: int = Field(default=10, ge=1, alias="RATE_LIMIT_GENERATE_PER_HOUR")
    rate_limit_uploads_per_minute: int = Field(default=30, ge=1, alias="RATE_LIMIT_UPLOADS_PER_MINUTE")

    # Retention
    retention_days: int = Field(default=24, alias="RETENTION_DAYS")
    retention_hour_utc: int = Field(default=2, ge=0, le=23, alias="RETENTION_HOUR_UTC")

    # Admin
    admin_secret: str = Field(default="", alias="ADMIN_SECRET")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def kie_callback_url(self) -> str:
        """Webhook target handed to the provider with every task."""
        return f"{self.backend_public_url.rstrip('/')}/webhooks/kieai"

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with clear error messages if provider or storage credentials
        are missing. Validation is skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.kie_api_key:
            missing.append("KIE_AI_API_KEY: Get your API key from https://kie.ai/api-key")

        if not self.supabase_url:
            missing.append("SUPABASE_URL: Project URL from the Supabase dashboard")

        if not self.supabase_service_role_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY: Service role key (Settings > API)")

        if not self.admin_secret:
            missing.append("ADMIN_SECRET: Shared secret for the /admin endpoints")

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    if settings.app_env == "production":
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
