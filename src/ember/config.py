from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, SecretStr


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    OPENAI_API_KEY: SecretStr | None = Field(None, description="OpenAI API Key")
    OPENAI_MODEL_EXTRACTION: str = Field(
        "gpt-4o-2024-08-06",
        description="Model used for structured memory extraction from text"
    )
    OPENAI_MODEL_VISION: str = Field(
        "gpt-4o-mini",
        description="Vision capable model used for screenshot captures"
    )
    OPENAI_TIMEOUT_SECONDS: float = Field(120.0, description="Per-request timeout for the extraction call")
    EXTRACTION_MAX_TOKENS: int = Field(4096, description="Completion token cap for one extraction")

    DATABASE_URL: str = Field("sqlite:///data/ember.db", description="SQLAlchemy database URL")
    DATA_DIR: Path = Field(Path("data"), description="Root directory for stored screenshots")

    JOB_CONCURRENCY: int = Field(5, description="Maximum capture jobs in flight at once")
    JOB_RETRIES: int = Field(3, description="Retries after the first attempt for transient errors")
    JOB_BACKOFF_MIN_SECONDS: float = Field(1.0, description="First backoff delay")
    JOB_BACKOFF_MAX_SECONDS: float = Field(30.0, description="Upper bound for backoff delay")
    DAILY_CAPTURE_LIMIT: int = Field(50, description="Captures admitted per profile per day")

    MIN_CAPTURE_CHARS: int = Field(100, description="Shortest text that can hold a memory")
    MAX_CAPTURE_CHARS: int = Field(100_000, description="Longest text accepted for extraction")
    MAX_SCREENSHOTS: int = Field(10, description="Screenshots accepted per capture")
    MAX_SCREENSHOT_BYTES: int = Field(10 * 1024 * 1024, description="Size cap for one screenshot")
    ERROR_MESSAGE_MAX_CHARS: int = Field(500, description="Stored error messages are cut to this length")

    DEFAULT_TOKEN_BUDGET: int = Field(8000, description="Wake prompt budget when the user has none")
    PURGE_AFTER_DAYS: int = Field(30, description="Soft-deleted rows older than this are purged")
    STALE_JOB_SECONDS: int = Field(900, description="Queued or processing captures untouched this long are resumed by the sweep")
    SWEEP_INTERVAL_SECONDS: int = Field(60, description="How often the scheduled retry sweep runs")

# Singleton instance
settings = Settings()
