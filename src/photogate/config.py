"""Environment-based configuration for photogate."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from photogate.ml.classifier import DEFAULT_THRESHOLDS


class Settings(BaseSettings):
    """Application settings loaded from PHOTOGATE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTOGATE_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    moderation_model: str = "nsfw_mobilenet_v2"
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    # Moderation
    moderation_enabled: bool = True
    preload_on_startup: bool = False
    load_timeout: float = Field(default=60.0, gt=0)
    inference_timeout: float = Field(default=10.0, gt=0)
    nsfw_thresholds: dict[str, float] = Field(default_factory=lambda: {str(k): v for k, v in DEFAULT_THRESHOLDS.items()})


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
