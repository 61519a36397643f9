"""Pydantic models for the fusion subsystem.

These models represent:
- The fused emotion decision with its ranked hierarchy
- Confidence and agreement scores
- Per-result analysis of the current emotional state
- The longitudinal wellness report
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from moodsync.models import EmotionLabel, Modality, utcnow

# ── Enums ─────────────────────────────────────────────────────


class WellnessLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ── Fusion output ────────────────────────────────────────────


class EmotionScore(BaseModel):
    """A single label with its fused probability."""

    label: EmotionLabel
    probability: float = Field(ge=0.0, le=1.0)


class ConfidenceScores(BaseModel):
    """Confidence breakdown attached to every fusion result."""

    overall: float = Field(ge=0.0, le=1.0)
    modality: float = Field(ge=0.0, le=1.0, description="Mean classifier confidence.")
    fusion: float = Field(ge=0.0, le=1.0, description="Max probability of the adjusted distribution.")
    agreement: float = Field(
        ge=0.0, le=1.0,
        description="Fraction of modality pairs whose most-likely label matches.",
    )


class FusionResult(BaseModel):
    """Calibrated, personality-adjusted emotional-state estimate.

    Produced once per detection request and owned by the caller.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    primary_emotion: EmotionScore
    secondary_emotions: list[EmotionScore] = Field(default_factory=list)
    full_distribution: list[float]
    confidence: ConfidenceScores
    modality_contributions: dict[Modality, float] = Field(default_factory=dict)
    context_snapshot: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    processing_duration_ms: float = 0.0


# ── Analysis ──────────────────────────────────────────────────


class CurrentEmotionAnalysis(BaseModel):
    """Snapshot reading of a single fusion result."""

    dominant: EmotionScore
    intensity: float = Field(description="Overall confidence of the result.")
    stability: float = Field(description="Cross-modality agreement.")
    complexity: int = Field(description="Number of secondary emotions reported.")
    authenticity: float = Field(
        description="Mean of agreement and overall confidence; low values hint at suppression.",
    )
    high_confidence: bool = False


class WellnessReport(BaseModel):
    """Trend and wellness metrics derived from a rolling history.

    Trend fields are ``None`` when the window is empty; their names are then
    listed in ``missing_fields``.
    """

    user_id: str
    dominant_emotion: EmotionLabel | None = None
    diversity: int | None = None
    stability: float | None = None
    wellness_score: float = Field(ge=0.0, le=1.0)
    level: WellnessLevel
    current: CurrentEmotionAnalysis | None = None
    window_size: int = 0
    missing_fields: list[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utcnow)
