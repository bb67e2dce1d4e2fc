"""
Configuration module using Pydantic Settings for environment variable management.

Only essential environment variables are exposed. Crop, encode and overlay
settings are hardcoded so every deployment produces identical output.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings.

    Only essential configuration is loaded from environment variables.
    All processing/encoding settings are hardcoded for consistency.
    """

    # ============================================================
    # ENVIRONMENT VARIABLES (minimal set)
    # ============================================================

    # Application
    app_name: str = "facestack"
    debug: bool = False
    log_level: str = "INFO"

    # Security - API authentication
    facestack_api_key: Optional[str] = None  # API key for authenticating incoming requests

    # Performance tuning
    max_workers: int = 2  # Max concurrent composition jobs

    # Webhooks
    callback_timeout_seconds: float = 30.0

    # ============================================================
    # HARDCODED SETTINGS (not configurable via env vars)
    # ============================================================

    @property
    def max_concurrent_jobs(self) -> int:
        return self.max_workers

    @property
    def temp_directory(self) -> str:
        return "/tmp/facestack"

    # Detection settings
    @property
    def face_confidence_threshold(self) -> float:
        return 0.5

    # Crop geometry
    @property
    def crop_zoom_factor(self) -> float:
        return 2.5  # Crop is 2.5x the face box on each axis

    @property
    def sample_timestamp_seconds(self) -> float:
        return 1.0  # Frame used to locate the face in each input

    # Encoding configuration
    @property
    def target_output_width(self) -> int:
        return 720

    @property
    def target_output_height(self) -> int:
        return 640

    @property
    def ffmpeg_preset(self) -> str:
        return "veryfast"

    @property
    def ffmpeg_crf(self) -> int:
        return 23

    @property
    def audio_bitrate(self) -> str:
        return "192k"

    @property
    def audio_channels(self) -> int:
        return 2  # amerge output is folded back to stereo

    # Overlay tracking
    @property
    def overlay_interval_ms(self) -> int:
        return 100

    @property
    def aspect_ratio_tolerance(self) -> float:
        return 0.02

    # Result retention
    @property
    def result_ttl_seconds(self) -> int:
        return 3600  # Unreleased artifacts are dropped after 1 hour

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
