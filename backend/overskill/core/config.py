"""Application configuration with validation."""

from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


class Settings(BaseSettings):
    """
    Application settings with validation.

    Uses Pydantic for configuration validation. Tiering to the object
    store stays off unless both the feature flag and R2 credentials are set.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    # CORS Configuration
    cors_allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:3001",
        description="Allowed CORS origins (comma-separated)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./overskill.db",
        description="Database connection URL"
    )
    # Connection pool tuning (PostgreSQL only; ignored for SQLite).
    db_pool_size: int = Field(
        default=5,
        description="Number of persistent database connections"
    )
    db_max_overflow: int = Field(
        default=10,
        description="Extra connections allowed during traffic bursts"
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection from the pool before raising"
    )
    db_pool_recycle: int = Field(
        default=1800,
        description="Seconds before a connection is recycled (prevents stale connections)"
    )

    # Object store (Cloudflare R2, S3-compatible API)
    r2_account_id: str = Field(default="", description="Cloudflare account id")
    r2_access_key_id: str = Field(default="", description="R2 access key id")
    r2_secret_access_key: str = Field(default="", description="R2 secret access key")
    r2_bucket: str = Field(
        default="overskill-db-files",
        description="Bucket holding tiered file and snapshot content"
    )
    r2_endpoint_url: str = Field(
        default="",
        description="Override for the S3 endpoint (empty = derived from account id)"
    )
    r2_region: str = Field(default="auto")

    # Tiering feature flag. Off by default: every write stays inline.
    r2_storage_enabled: bool = Field(
        default=False,
        description="Promote large content to the object store in the background"
    )

    # Tier thresholds in bytes.
    # <= inline_max_bytes stays inline, <= hybrid_max_bytes becomes hybrid,
    # anything larger becomes object-store-only.
    inline_max_bytes: int = Field(default=1024)
    hybrid_max_bytes: int = Field(default=10240)
    version_snapshot_min_bytes: int = Field(
        default=10240,
        description="Snapshot manifests smaller than this are skipped by the version sweep"
    )
    object_cache_ttl_seconds: int = Field(
        default=600,
        description="TTL of the in-process object-store read cache (0 disables)"
    )

    # Deployment
    deploy_base_domain: str = Field(default="overskill.workers.dev")
    deploy_command: str = Field(
        default="",
        description="External executor invoked by the worker for deployment jobs (empty = none)"
    )
    deploy_timeout_seconds: int = Field(default=600)

    # Version display names (LiteLLM model string; empty = deterministic names)
    display_name_model: str = Field(default="")
    display_name_api_key: str = Field(default="")
    display_name_api_base: str = Field(default="")

    # Worker
    worker_poll_interval: int = Field(default=10, description="Seconds between job queue polls")
    job_max_retries: int = Field(default=1, description="Automatic retries for failed background jobs")

    # Sharding
    apps_per_shard: int = Field(default=10000)

    # Rate Limiting
    rate_limit_per_minute: int = Field(
        default=120,
        description="Maximum requests per client per minute"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """
        Get CORS origins as a list.

        Parses comma-separated string and validates no wildcards.
        """
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]

        # SECURITY: Prevent wildcard CORS
        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )

        return origins

    @property
    def object_store_configured(self) -> bool:
        """True when enough R2 settings exist to build a client."""
        has_endpoint = bool(self.r2_endpoint_url or self.r2_account_id)
        return bool(
            has_endpoint
            and self.r2_access_key_id
            and self.r2_secret_access_key
            and self.r2_bucket
        )

    def get_r2_endpoint(self) -> str:
        """Resolve the S3 endpoint for the configured account."""
        if self.r2_endpoint_url:
            return self.r2_endpoint_url
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('hybrid_max_bytes')
    @classmethod
    def validate_thresholds(cls, v: int, info) -> int:
        """The hybrid ceiling must sit above the inline ceiling."""
        inline_max = info.data.get('inline_max_bytes', 0)
        if v < inline_max:
            raise ValueError("hybrid_max_bytes must be >= inline_max_bytes")
        return v

    def validate_production_config(self) -> None:
        """Validate configuration for production environment.

        In production, fails startup if tiering is switched on without
        object-store credentials or CORS still allows localhost.
        In development, returns and lets main.py log warnings.

        Raises:
            ConfigurationError: If production config is unusable.
        """
        errors: list[str] = []

        if self.r2_storage_enabled and not self.object_store_configured:
            errors.append(
                "R2_STORAGE_ENABLED is true but R2 credentials are incomplete. "
                "Set R2_ACCOUNT_ID, R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY and R2_BUCKET."
            )

        origins = self.get_cors_origins()
        localhost_origins = [o for o in origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            errors.append(
                f"CORS allows localhost origins: {localhost_origins}. "
                "Remove localhost origins for production."
            )

        if errors:
            if self.environment == Environment.PRODUCTION:
                raise ConfigurationError(
                    "Production configuration is invalid:\n  - " + "\n  - ".join(errors)
                )
            return

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        # Allow reading from environment variables with different case
        case_sensitive = False


# Global settings instance
settings = Settings()
