"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file="../.env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./mealforge.db", alias="DATABASE_URL")
    db_pool_size: int = Field(default=50, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Content services (recipe concepts and nutrition scoring)
    content_service_url: str = Field(default="", alias="CONTENT_SERVICE_URL")
    content_service_token: str = Field(default="", alias="CONTENT_SERVICE_TOKEN")
    nutrition_service_url: str = Field(default="", alias="NUTRITION_SERVICE_URL")

    # Replicate Image Generation
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_model_version: str = Field(
        default="black-forest-labs/flux-schnell", alias="REPLICATE_MODEL_VERSION"
    )

    # Durable image storage (Pinata)
    pinata_jwt: str = Field(default="", alias="PINATA_JWT")
    pinata_gateway: str = Field(default="gateway.pinata.cloud", alias="PINATA_GATEWAY")
    placeholder_image_url: str = Field(
        default="https://cdn.mealforge.app/placeholders/recipe.png",
        alias="PLACEHOLDER_IMAGE_URL",
    )

    # Orchestration
    job_parallelism: int = Field(default=5, ge=1, alias="JOB_PARALLELISM")
    max_items_per_request: int = Field(default=50, ge=1, alias="MAX_ITEMS_PER_REQUEST")
    quota_resource_kind: str = Field(default="ai_generations", alias="QUOTA_RESOURCE_KIND")
    duplicate_scope: str = Field(default="account", alias="DUPLICATE_SCOPE")
    dedupe_threshold: int = Field(default=6, ge=0, le=64, alias="DEDUPE_THRESHOLD")

    # Per-stage adapter timeouts (seconds)
    concept_timeout_seconds: float = Field(default=60.0, alias="CONCEPT_TIMEOUT_SECONDS")
    validation_timeout_seconds: float = Field(default=30.0, alias="VALIDATION_TIMEOUT_SECONDS")
    image_timeout_seconds: float = Field(default=120.0, alias="IMAGE_TIMEOUT_SECONDS")
    storage_timeout_seconds: float = Field(default=30.0, alias="STORAGE_TIMEOUT_SECONDS")
    persist_timeout_seconds: float = Field(default=10.0, alias="PERSIST_TIMEOUT_SECONDS")

    # Retry policy
    retry_max_attempts: int = Field(default=3, ge=1, alias="RETRY_MAX_ATTEMPTS")
    retry_base_delay_seconds: float = Field(default=1.0, alias="RETRY_BASE_DELAY_SECONDS")
    retry_max_delay_seconds: float = Field(default=20.0, alias="RETRY_MAX_DELAY_SECONDS")
    retry_jitter_seconds: float = Field(default=0.5, alias="RETRY_JITTER_SECONDS")
    stage_deadline_seconds: float = Field(default=300.0, alias="STAGE_DEADLINE_SECONDS")

    # Circuit breaker
    breaker_failure_threshold: float = Field(
        default=0.5, gt=0.0, le=1.0, alias="BREAKER_FAILURE_THRESHOLD"
    )
    breaker_min_samples: int = Field(default=5, ge=1, alias="BREAKER_MIN_SAMPLES")
    breaker_window_size: int = Field(default=20, ge=1, alias="BREAKER_WINDOW_SIZE")
    breaker_cooldown_seconds: float = Field(default=30.0, alias="BREAKER_COOLDOWN_SECONDS")
    breaker_max_cooldown_seconds: float = Field(
        default=300.0, alias="BREAKER_MAX_COOLDOWN_SECONDS"
    )

    # Tier configuration
    default_tier: str = Field(default="starter", alias="DEFAULT_TIER")
    account_tiers: dict[str, str] = Field(default_factory=dict, alias="ACCOUNT_TIERS")

    # Background workers
    snapshot_interval_seconds: float = Field(default=2.0, alias="SNAPSHOT_INTERVAL_SECONDS")
    progress_retention_seconds: float = Field(default=1800.0, alias="PROGRESS_RETENTION_SECONDS")
    healing_interval_seconds: float = Field(default=300.0, alias="HEALING_INTERVAL_SECONDS")
    healing_batch_size: int = Field(default=10, alias="HEALING_BATCH_SIZE")
    healing_max_attempts: int = Field(default=3, alias="HEALING_MAX_ATTEMPTS")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Ensures the provider credentials the pipeline depends on are set.
        Fails fast with clear error messages if configuration is incomplete.

        Validation is skipped in test environments to avoid breaking tests.
        """
        if self.duplicate_scope not in ("account", "global"):
            raise ValueError("DUPLICATE_SCOPE must be 'account' or 'global'")

        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.content_service_url:
            missing.append("CONTENT_SERVICE_URL: Base URL of the recipe concept service")

        if not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )

        if not self.pinata_jwt:
            missing.append("PINATA_JWT: Get your JWT token from https://pinata.cloud")

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

    Events below LOG_LEVEL are dropped before rendering.
    """
    processors: list = [
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if settings.app_env == "production":
        processors += [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
