"""
ClipCraft — Runtime Settings
Render timeouts, retry policy and preview limits. Every value can be
overridden from the environment with the CLIPCRAFT_ prefix, e.g.
CLIPCRAFT_MAX_RETRIES=0 or CLIPCRAFT_TIMEOUT_MAX_SEC=900.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Configurable Limits ---
TIMEOUT_BASE_SEC = 120.0       # Floor for any render (a plain crop or trim)
TIMEOUT_MAX_SEC = 300.0        # 5 minute ceiling for a full render
TIMEOUT_PER_INSTRUCTION = 10.0 # Extra allowance per compiled instruction
TIMEOUT_PER_MEDIA_SEC = 2.0    # Extra allowance per second of source media
MAX_RETRIES = 2                # Retries after the first attempt
RETRY_BACKOFF_SEC = 1.0        # Base delay, doubled every attempt
PROGRESS_INTERVAL_SEC = 1.0    # Estimator tick
PREVIEW_MAX_PIXELS = 640 * 360 # Preview downscale cap
CLEANUP_TIMEOUT_SEC = 10.0     # Per-file delete budget during cleanup


class RenderSettings(BaseSettings):
    """Orchestrator and preview configuration."""

    timeout_base_sec: float = Field(default=TIMEOUT_BASE_SEC, gt=0)
    timeout_max_sec: float = Field(default=TIMEOUT_MAX_SEC, gt=0)
    timeout_per_instruction: float = Field(default=TIMEOUT_PER_INSTRUCTION, ge=0)
    timeout_per_media_sec: float = Field(default=TIMEOUT_PER_MEDIA_SEC, ge=0)
    max_retries: int = Field(default=MAX_RETRIES, ge=0, le=10)
    retry_backoff_sec: float = Field(default=RETRY_BACKOFF_SEC, ge=0)
    progress_interval_sec: float = Field(default=PROGRESS_INTERVAL_SEC, gt=0)
    busy_policy: Literal["queue", "reject"] = "queue"
    ffmpeg_path: Optional[str] = None
    lut_dir: Optional[str] = None
    preview_max_pixels: int = Field(default=PREVIEW_MAX_PIXELS, ge=64 * 64)
    cleanup_timeout_sec: float = Field(default=CLEANUP_TIMEOUT_SEC, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="CLIPCRAFT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> RenderSettings:
    """Process-wide settings, read once from the environment."""
    return RenderSettings()
