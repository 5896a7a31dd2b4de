"""Application configuration using Pydantic Settings."""

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class EstimatorProvider(str, Enum):
    """Supported body composition estimator providers."""
    GEMINI = "gemini"
    OPENAI = "openai"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017"
    db_name: str = "bodyscan_db"
    scans_collection: str = "scans"
    streaks_collection: str = "scan_streaks"
    photo_bucket_name: str = "scan_photos_fs"

    # Estimator Provider Selection
    estimator_provider: EstimatorProvider = EstimatorProvider.GEMINI

    # Google Gemini Configuration
    google_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    gemini_qc_model: str = "gemini-2.0-flash-lite"  # Cheaper model for the QC pass

    # OpenAI Configuration
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"

    # LLM Settings
    llm_temperature: float = 0.0
    photo_fetch_timeout: float = 30.0

    # Pipeline
    upload_max_retries: int = 3  # Retries after the first attempt
    qc_max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    retry_backoff_max_seconds: float = 30.0
    min_estimation_confidence: float = 0.5
    max_photo_bytes: int = 10 * 1024 * 1024  # 10 MB
    user_timezone: str = "America/Chicago"

    # Resume scheduler
    resume_schedule_enabled: bool = True
    resume_interval_minutes: int = 5
    resume_stale_after_minutes: int = 10

    # App
    debug: bool = False
    log_level: str = "INFO"
    app_name: str = "Body Scan API"
    api_version: str = "1.0.0"

    @property
    def is_estimator_configured(self) -> bool:
        """Check if the selected estimator provider is configured."""
        if self.estimator_provider == EstimatorProvider.GEMINI:
            return bool(self.google_api_key)
        elif self.estimator_provider == EstimatorProvider.OPENAI:
            return bool(self.openai_api_key)
        return False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
