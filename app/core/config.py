"""
Application Configuration
Loads settings from environment variables.
"""

from typing import List
from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    APP_NAME: str = "AdStudio Generation API"
    DEBUG: bool = False
    API_BASE_URL: str = "http://localhost:8000"  # Base URL for file serving

    # Database - SQLite for local dev, PostgreSQL for production
    DATABASE_URL: str = "sqlite:///./adstudio.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Redis
    REDIS_URL: str = "redis://localhost:6379"

    # Job dispatch: "inline" runs the executor after the HTTP response in the
    # API process, "rq" hands it to the worker pool via Redis
    JOB_QUEUE_BACKEND: str = "inline"

    # Image Generation (Gemini native image models)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL_FLASH: str = "gemini-2.5-flash-image"
    GEMINI_MODEL_PRO: str = "gemini-3-pro-image-preview"
    GEMINI_MODEL_ULTRA: str = "gemini-3-pro-image-preview"
    GEMINI_TIMEOUT_SECONDS: int = 180  # Transport timeout for a single call

    # Resolution tier sent to the model per model tier ("" = model default)
    IMAGE_SIZE_FLASH: str = ""
    IMAGE_SIZE_PRO: str = "2K"
    IMAGE_SIZE_ULTRA: str = "4K"

    # Credits debited per model tier
    CREDIT_COST_FLASH: int = 10
    CREDIT_COST_PRO: int = 40
    CREDIT_COST_ULTRA: int = 80

    # Debug escape hatch: prompts starting with this prefix skip admission
    # control and the model call
    DEBUG_PROMPT_PREFIX: str = "debug:"
    DEBUG_SLOW_SECONDS: float = 8.0
    DEBUG_PLACEHOLDER_URL: str = "https://placehold.co/1024x1024/png?text=DEBUG+MODE"

    # Content assembly
    REFERENCE_FETCH_TIMEOUT: float = 15.0
    CRITICAL_FETCH_RETRY_DELAY: float = 0.5
    VECTOR_CANVAS_SIZE: int = 1024  # Vector references are rasterized to fit this square
    AUXILIARY_MAX_DIMENSION: int = 2048  # Larger logo/style rasters are downscaled

    # Storage - S3 settings (optional)
    S3_BUCKET: str = ""
    S3_ENDPOINT: str = ""
    S3_ACCESS_KEY: str = ""
    S3_SECRET_KEY: str = ""
    S3_REGION: str = "us-east-1"

    # Local storage fallback
    LOCAL_STORAGE_PATH: str = "./uploads"
    USE_LOCAL_STORAGE: bool = True

    # Google Cloud Storage (for Cloud Run deployment)
    USE_GCS: bool = False
    GCS_BUCKET_ASSETS: str = "adstudio-business-assets"
    GCP_PROJECT_ID: str = ""

    # Cloud SQL connection (for Cloud Run)
    CLOUD_SQL_CONNECTION_NAME: str = ""  # Format: PROJECT_ID:REGION:INSTANCE

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Worker settings
    JOB_TIMEOUT_GENERATION: int = 300
    JOB_STALE_AFTER_SECONDS: int = 900  # Processing rows older than this are orphans
    RECOVER_ON_STARTUP: bool = True

    @field_validator('GEMINI_API_KEY', 'S3_ACCESS_KEY', 'S3_SECRET_KEY', mode='before')
    @classmethod
    def strip_api_keys(cls, v):
        """Strip whitespace and newlines from API keys loaded from secrets."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('JOB_QUEUE_BACKEND')
    @classmethod
    def check_queue_backend(cls, v):
        if v not in ("inline", "rq"):
            raise ValueError("JOB_QUEUE_BACKEND must be 'inline' or 'rq'")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
