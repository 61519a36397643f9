"""Centralised engine settings loaded from environment / .env file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """All runtime configuration for the emotion fusion engine.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Every variable lives in the flat
    ``MOODSYNC_`` namespace (stripped automatically by *pydantic-settings*),
    e.g. ``MOODSYNC_TREND_WINDOW_SIZE=8``.
    """

    model_config = SettingsConfigDict(
        env_prefix="MOODSYNC_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ── Calibration ───────────────────────────────────────────
    default_adaptation_rate: float = Field(0.1, gt=0.0, lt=1.0)
    feedback_step: float = 0.1  # bias[label] += adaptation_rate * feedback_step
    calibration_bias_limit: float | None = None  # None = unbounded accumulation

    # ── Personality ───────────────────────────────────────────
    personality_update_rate: float = 0.01

    # ── Fusion ────────────────────────────────────────────────
    context_width: int = Field(20, ge=16)
    probability_tolerance: float = 1e-6
    modality_timeout_seconds: float = 1.5

    # ── Wellness / trends ─────────────────────────────────────
    trend_window_size: int = Field(10, ge=1)
    wellness_recent_count: int = Field(5, ge=1)
    wellness_high_threshold: float = 0.7
    wellness_medium_threshold: float = 0.4

    # ── Profile store ─────────────────────────────────────────
    store_retry_attempts: int = Field(3, ge=1)
    profile_cache_size: int = Field(10_000, ge=1)  # users kept in memory per profile kind
    profile_dir: Path = _PROJECT_ROOT / "data" / "profiles"


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
