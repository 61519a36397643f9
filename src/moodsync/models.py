"""Shared Pydantic models used across the engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# ── Enums ─────────────────────────────────────────────────────


class EmotionLabel(str, Enum):
    """Primary emotion labels.

    Declaration order is the index contract shared by every probability
    vector in the engine.
    """

    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    FEARFUL = "fearful"
    SURPRISED = "surprised"
    DISGUSTED = "disgusted"
    NEUTRAL = "neutral"


EMOTION_LABELS: tuple[EmotionLabel, ...] = tuple(EmotionLabel)


class Modality(str, Enum):
    """Independent emotion-signal channels."""

    FACIAL = "facial"
    VOICE = "voice"
    TEXT = "text"
    BIOMETRIC = "biometric"


# Fixed slot order of modality vectors in the fusion input.
MODALITY_ORDER: tuple[Modality, ...] = (
    Modality.FACIAL,
    Modality.VOICE,
    Modality.TEXT,
    Modality.BIOMETRIC,
)


class LocationCategory(str, Enum):
    HOME = "home"
    WORK = "work"
    OTHER = "other"


class ActivityCategory(str, Enum):
    WORKING = "working"
    RELAXING = "relaxing"
    EXERCISING = "exercising"
    COMMUTING = "commuting"
    SOCIALIZING = "socializing"
    SLEEPING = "sleeping"


class TimeOfDay(str, Enum):
    MORNING = "morning"  # 05:00–12:00
    AFTERNOON = "afternoon"  # 12:00–17:00
    EVENING = "evening"  # 17:00–21:00
    NIGHT = "night"


# ── Inputs ────────────────────────────────────────────────────


class ContextSignals(BaseModel):
    """Situational context already resolved to enumerated categories.

    ``location`` and ``activity`` are kept as plain strings: values outside
    the known categories are legal and simply encode as "unknown".
    """

    timestamp: datetime | None = None
    location: str | None = None
    activity: str | None = None
    tags: list[str] = Field(default_factory=list)


class ClassifierOutput(BaseModel):
    """What a modality classifier returns: a label-aligned vector and a confidence."""

    probabilities: list[float]
    confidence: float | None = Field(None, ge=0.0, le=1.0)


class ModalityObservation(BaseModel):
    """One normalised classifier invocation, consumed once by fusion."""

    model_config = ConfigDict(frozen=True)

    modality: Modality
    raw_probabilities: tuple[float, ...]
    confidence: float = Field(ge=0.0, le=1.0)
    context_tags: tuple[str, ...] = ()
    timestamp: datetime = Field(default_factory=utcnow)


# ── Per-user profiles ─────────────────────────────────────────


class CalibrationProfile(BaseModel):
    """Per-user, per-modality additive bias learned from feedback."""

    user_id: str
    per_modality_bias: dict[Modality, list[float]] = Field(default_factory=dict)
    adaptation_rate: float = Field(0.1, gt=0.0, lt=1.0)
    version: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    def bias_for(self, modality: Modality) -> list[float]:
        """Return the bias vector for *modality* (zeros if never calibrated)."""
        bias = self.per_modality_bias.get(modality)
        if bias is None:
            return [0.0] * len(EMOTION_LABELS)
        return list(bias)


class PersonalityProfile(BaseModel):
    """Big-Five trait vector, slowly evolved from fusion outcomes."""

    user_id: str
    openness: float = Field(0.5, ge=0.0, le=1.0)
    conscientiousness: float = Field(0.5, ge=0.0, le=1.0)
    extraversion: float = Field(0.5, ge=0.0, le=1.0)
    agreeableness: float = Field(0.5, ge=0.0, le=1.0)
    neuroticism: float = Field(0.5, ge=0.0, le=1.0)
    last_updated: datetime = Field(default_factory=utcnow)
    version: int = 0

    def traits(self) -> list[float]:
        """Trait scalars in O, C, E, A, N order."""
        return [
            self.openness,
            self.conscientiousness,
            self.extraversion,
            self.agreeableness,
            self.neuroticism,
        ]


TRAIT_NAMES: tuple[str, ...] = (
    "openness",
    "conscientiousness",
    "extraversion",
    "agreeableness",
    "neuroticism",
)
