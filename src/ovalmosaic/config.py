"""Environment-based configuration for the mosaic service."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ovalmosaic.mosaic.patch import BlockSizePolicy


class Settings(BaseSettings):
    """Application settings loaded from OVALMOSAIC_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="OVALMOSAIC_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Landmark model
    models_dir: str = "models"
    landmarker_model: str = "face_landmarker_float16"
    num_faces: int = Field(default=20, ge=1)
    min_face_detection_confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=52_428_800, ge=1)

    # Seconds a request may wait for the worker before getting 503
    queue_timeout: float = Field(default=30.0, gt=0)

    # Mosaic
    expansion: float = Field(default=1.12, ge=1.0)
    padding: float = Field(default=0.08, ge=0.0, le=0.5)
    default_strength: int = Field(default=16, ge=1, le=256)
    single_block_policy: BlockSizePolicy = BlockSizePolicy.AUTO
    batch_block_policy: BlockSizePolicy = BlockSizePolicy.FIXED

    # Output names
    mosaic_filename: str = "mosaic.png"
    archive_filename: str = "face-oval-mosaic.zip"


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
