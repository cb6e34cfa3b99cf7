"""
Configuration and settings for the vignette backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # S3-compatible blob storage for panoramas and panels
    storage_endpoint: Optional[str] = Field(default=None, env="STORAGE_ENDPOINT")
    storage_region: Optional[str] = Field(default=None, env="STORAGE_REGION")
    storage_bucket: Optional[str] = Field(default=None, env="STORAGE_BUCKET")
    storage_public_base_url: Optional[str] = Field(
        default=None, env="STORAGE_PUBLIC_BASE_URL"
    )
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # Image generation (Leonardo)
    leonardo_api_key: Optional[str] = Field(default=None, env="LEONARDO_API_KEY")
    leonardo_base_url: str = Field(
        default="https://cloud.leonardo.ai/api/rest/v1", env="LEONARDO_BASE_URL"
    )
    leonardo_model_id: str = Field(
        default="05ce0082-2d80-4a2d-8653-4d1c85e2418e", env="LEONARDO_MODEL_ID"
    )
    leonardo_guidance_scale: Optional[float] = Field(
        default=7, env="LEONARDO_GUIDANCE_SCALE"
    )
    leonardo_negative_prompt: str = Field(
        default="bad anatomy, blurry, low quality, text, captions, borders",
        env="LEONARDO_NEGATIVE_PROMPT",
    )
    leonardo_poll_interval_seconds: float = Field(
        default=2.0, env="LEONARDO_POLL_INTERVAL_SECONDS"
    )
    leonardo_max_poll_attempts: int = Field(
        default=30, env="LEONARDO_MAX_POLL_ATTEMPTS"
    )

    # Panorama geometry: side length in pixels, must be divisible by 3
    panorama_size: int = Field(default=1536, env="PANORAMA_SIZE")

    # Generation deadline and retry policy
    generation_timeout_seconds: float = Field(
        default=90.0, env="GENERATION_TIMEOUT_SECONDS"
    )
    generation_max_attempts: int = Field(default=3, env="GENERATION_MAX_ATTEMPTS")
    retry_base_delay_seconds: float = Field(
        default=1.0, env="RETRY_BASE_DELAY_SECONDS"
    )
    retry_max_delay_seconds: float = Field(
        default=30.0, env="RETRY_MAX_DELAY_SECONDS"
    )

    # LLM / Gemini scene writer
    gemini_api_key: Optional[str] = Field(default=None, env="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-3-flash-preview", env="GEMINI_MODEL")

    # Hosted auth provider (Supabase)
    supabase_url: Optional[str] = Field(default=None, env="SUPABASE_URL")
    supabase_anon_key: Optional[str] = Field(default=None, env="SUPABASE_ANON_KEY")

    # Single-flight lock (Redis)
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")
    lock_key_prefix: str = Field(default="vignette:splice:", env="LOCK_KEY_PREFIX")
    lock_ttl_seconds: int = Field(default=600, env="LOCK_TTL_SECONDS")

    # Pipeline tuning
    upload_concurrency: int = Field(default=4, env="UPLOAD_CONCURRENCY")
    scene_fallback: Literal["strict", "pad"] = Field(
        default="strict", env="SCENE_FALLBACK"
    )
    prompt_max_length: int = Field(default=1500, env="PROMPT_MAX_LENGTH")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="USE_IN_MEMORY_BACKENDS"
    )

    def missing_required(self) -> list[str]:
        """Names of the settings a production deployment cannot run without."""
        required = {
            "DATABASE_URL": self.database_url,
            "STORAGE_BUCKET": self.storage_bucket,
            "LEONARDO_API_KEY": self.leonardo_api_key,
            "GEMINI_API_KEY": self.gemini_api_key,
            "SUPABASE_URL": self.supabase_url,
            "SUPABASE_ANON_KEY": self.supabase_anon_key,
        }
        missing = [name for name, value in required.items() if not value]
        if self.panorama_size <= 0 or self.panorama_size % 3:
            missing.append("PANORAMA_SIZE (positive multiple of 3)")
        return missing


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
