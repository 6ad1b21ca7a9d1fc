"""Environment-based configuration for SceneLens."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SCENELENS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SCENELENS_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    classification_model: str = "resnet50"
    models_dir: str = "models"
    top_k: int = Field(default=5, ge=1)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Per-request inference timeout in seconds (None = wait forever)
    inference_timeout: float | None = Field(default=None, gt=0)

    # Capture device
    camera_enabled: bool = True
    camera_index: int = Field(default=0, ge=0)
    frame_width: int = Field(default=352, ge=1)
    frame_height: int = Field(default=288, ge=1)
    frame_orientation: Literal[
        "up", "up_mirrored", "down", "down_mirrored", "left_mirrored", "right", "right_mirrored", "left"
    ] = "up_mirrored"

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Model management
    model_ttl: int = Field(default=0, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
