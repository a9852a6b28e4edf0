"""Configuration management for Goal Bingo.

This module provides centralized configuration using Pydantic Settings,
reading from environment variables and an optional ``.env`` file.

Environment Profiles:
    - DEVELOPMENT: Verbose logging, inline event dispatch, safe defaults
    - PRODUCTION: JSON logs, tracing enabled, optimized for stability
    - TESTING: In-memory database, minimal logging, fast execution

Example:
    >>> from goalbingo.config import settings, Environment
    >>> print(settings.feed_page_size)
    20
    >>> print(settings.environment)
    Environment.DEVELOPMENT
    >>> if settings.is_production:
    ...     print("Running in production mode")
"""

from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Runtime environment with specific behavior profiles.

    Attributes:
        DEVELOPMENT: Verbose logging, inline dispatch, safe defaults
        PRODUCTION: JSON logs, tracing enabled, optimized for stability
        TESTING: In-memory database, minimal logging, fast execution
        STAGING: Pre-production validation environment
    """

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Attributes:
        data_dir: Base directory for the database, logs and blobs
        database_path: Path to SQLite database file
        feed_fetch_limit: Candidate events fetched for the public feed
        feed_page_size: Events returned per feed read
        dispatch_inline: Drain the event outbox right after each mutation
        inference_api_key: Token for the OpenAI-compatible inference endpoint
        storage_dir: Directory backing the local object storage
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment Configuration
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Runtime environment (development, production, testing, staging)",
    )

    # Data Directory Configuration
    data_dir: Path = Field(
        Path("./data"),
        description="Base directory for all data files (database, logs, blobs)",
    )

    # Database Configuration
    database_path: Path = Field(
        Path("goalbingo.db"),  # Will be updated to data_dir/goalbingo.db by validator
        description="Path to SQLite database file (defaults to data_dir/goalbingo.db)",
    )

    # Board Rules
    default_board_size: int = Field(5, ge=1, description="Grid size used when none is given")
    min_board_size: int = Field(3, ge=1, description="Smallest allowed grid size")
    max_board_size: int = Field(9, ge=1, description="Largest allowed grid size")
    default_streak_target_days: int = Field(
        30,
        ge=1,
        description="Streak target used when a streak is enabled without one",
    )

    # Text Limits
    max_board_name_length: int = Field(100, ge=1)
    max_goal_text_length: int = Field(200, ge=1)
    max_comment_length: int = Field(500, ge=1)
    max_username_length: int = Field(30, ge=1)
    max_community_name_length: int = Field(50, ge=1)

    # Feed Configuration
    feed_fetch_limit: int = Field(
        50,
        ge=1,
        description="Candidate events fetched for public and community feeds",
    )
    watch_feed_fetch_limit: int = Field(
        100,
        ge=1,
        description="Candidate events fetched for the watch feed",
    )
    feed_page_size: int = Field(
        20,
        ge=1,
        description="Maximum number of events returned by a feed read",
    )
    community_boards_limit: int = Field(
        20,
        ge=1,
        description="Maximum number of boards listed on the community page",
    )

    # Token Lengths
    share_id_length: int = Field(12, ge=8, le=64)
    invite_code_length: int = Field(8, ge=6, le=32)

    # Event Outbox
    dispatch_inline: bool = Field(
        default=True,
        description="Drain pending outbox entries right after each committed mutation",
    )
    outbox_batch_size: int = Field(
        100,
        ge=1,
        le=10_000,
        description="Maximum outbox entries processed per drain",
    )
    outbox_poll_seconds: float = Field(
        1.0,
        gt=0,
        description="Sleep between drains in the background worker",
    )

    # AI Inference
    inference_base_url: str = Field(
        "https://openrouter.ai/api/v1",
        description="Base URL of the OpenAI-compatible chat completions API",
    )
    inference_api_key: Optional[str] = Field(
        None,
        alias="OPENROUTER_TOKEN",
        description="Bearer token for the inference API (AI features disabled if unset)",
    )
    ranking_model: str = Field("openai/gpt-3.5-turbo")
    vision_model: str = Field("openai/gpt-4o-mini")
    inference_timeout_seconds: float = Field(30.0, gt=0)
    inference_max_attempts: int = Field(3, ge=1, le=10)
    max_extracted_goals: int = Field(24, ge=1)

    # Object Storage
    storage_dir: Path = Field(
        Path("blobs"),  # Will be updated to data_dir/blobs by validator
        description="Directory backing local object storage",
    )
    storage_base_url: str = Field(
        "http://localhost:8000/blobs",
        description="Public URL prefix for stored blobs",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_to_file: bool = Field(
        default=True,
        description="Enable file logging in addition to console",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (recommended for production)",
    )

    # Observability (OpenTelemetry)
    enable_tracing: bool = Field(
        default=False,
        description="Enable OpenTelemetry distributed tracing",
    )
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry OTLP endpoint for traces (e.g., http://localhost:4317)",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand and resolve data directory path."""
        path = Path(v).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @model_validator(mode="after")
    def set_path_defaults(self) -> "Settings":
        """Anchor database and blob paths under data_dir unless given explicitly."""
        if self.database_path == Path("goalbingo.db"):
            self.database_path = self.data_dir / "goalbingo.db"
        if self.storage_dir == Path("blobs"):
            self.storage_dir = self.data_dir / "blobs"
        if not self.uses_memory_database:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
        return self

    @model_validator(mode="after")
    def check_board_size_bounds(self) -> "Settings":
        """Reject inconsistent board size bounds."""
        if self.min_board_size > self.max_board_size:
            raise ValueError("min_board_size must not exceed max_board_size")
        if not self.min_board_size <= self.default_board_size <= self.max_board_size:
            raise ValueError("default_board_size must lie within the board size bounds")
        return self

    @model_validator(mode="after")
    def apply_environment_profile(self) -> "Settings":
        """Apply environment-specific defaults.

        Profiles:
            - PRODUCTION: INFO logging, JSON logs, tracing enabled
            - DEVELOPMENT: DEBUG logging, inline dispatch, tracing disabled
            - TESTING: In-memory database, ERROR logging, no file logging, no tracing
            - STAGING: Production-like with INFO logging

        Returns:
            Modified settings instance with environment-specific adjustments
        """
        if self.environment == Environment.PRODUCTION:
            if self.log_level == "DEBUG":
                self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        elif self.environment == Environment.DEVELOPMENT:
            self.log_level = "DEBUG"
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.TESTING:
            self.database_path = Path(":memory:")
            self.log_level = "ERROR"
            self.log_to_file = False
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.STAGING:
            self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        return self

    @property
    def uses_memory_database(self) -> bool:
        """Check if the database lives in memory only."""
        return str(self.database_path) == ":memory:"

    @property
    def database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        if self.uses_memory_database:
            return "sqlite://"
        return f"sqlite:///{self.database_path}"

    @property
    def ai_configured(self) -> bool:
        """Check if an inference API key is available."""
        return bool(self.inference_api_key)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    @property
    def is_staging(self) -> bool:
        """Check if running in staging environment."""
        return self.environment == Environment.STAGING

    def redact_token(self, token: Optional[str] = None) -> str:
        """Redact sensitive token for logging.

        Args:
            token: Token to redact (defaults to inference_api_key)

        Returns:
            Redacted token string
        """
        token = token or self.inference_api_key
        if not token:
            return "None"
        return f"{token[:8]}...{token[-4:]}" if len(token) > 12 else "***"


def get_settings() -> Settings:
    """Get a fresh settings instance from the environment.

    Returns:
        Configured Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
