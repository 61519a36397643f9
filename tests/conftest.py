"""Shared pytest fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from moodsync.fusion.confidence import evaluate_confidence, rank_emotions
from moodsync.fusion.models import FusionResult
from moodsync.fusion.pipeline import FusionPipeline
from moodsync.models import (
    EMOTION_LABELS,
    ContextSignals,
    EmotionLabel,
    Modality,
    ModalityObservation,
    PersonalityProfile,
)
from moodsync.storage.profiles import InMemoryProfileStore

# Wednesday 2024-03-06, 14:00 UTC
FIXED_TS = datetime(2024, 3, 6, 14, 0, tzinfo=timezone.utc)


def one_hot(label: EmotionLabel | str, weight: float = 0.8) -> list[float]:
    """Vector with *weight* on *label* and the remainder spread evenly."""
    index = EMOTION_LABELS.index(EmotionLabel(label))
    rest = (1.0 - weight) / (len(EMOTION_LABELS) - 1)
    return [weight if i == index else rest for i in range(len(EMOTION_LABELS))]


def make_observation(
    modality: Modality | str,
    probabilities: list[float],
    confidence: float = 0.8,
) -> ModalityObservation:
    return ModalityObservation(
        modality=Modality(modality),
        raw_probabilities=tuple(probabilities),
        confidence=confidence,
        timestamp=FIXED_TS,
    )


def make_result(
    label: EmotionLabel | str,
    *,
    overall: float = 0.8,
    user_id: str = "U001",
    timestamp: datetime = FIXED_TS,
    location: str | None = "home",
    activity: str | None = "relaxing",
) -> FusionResult:
    """Build a fusion result with a chosen primary label and overall confidence."""
    distribution = one_hot(label, 0.7)
    obs = make_observation(Modality.FACIAL, distribution, confidence=overall)
    scores = evaluate_confidence([obs], distribution)
    scores = scores.model_copy(update={"overall": overall})
    primary, secondary = rank_emotions(distribution)
    return FusionResult(
        user_id=user_id,
        primary_emotion=primary,
        secondary_emotions=secondary,
        full_distribution=distribution,
        confidence=scores,
        modality_contributions={Modality.FACIAL: 1.0},
        context_snapshot={
            "timestamp": timestamp.isoformat(),
            "location": location,
            "activity": activity,
            "time_of_day": "afternoon",
            "tags": [],
        },
        timestamp=timestamp,
    )


@pytest.fixture
def context() -> ContextSignals:
    return ContextSignals(timestamp=FIXED_TS, location="home", activity="relaxing")


@pytest.fixture
def neutral_personality() -> PersonalityProfile:
    return PersonalityProfile(user_id="U001")


@pytest.fixture
def sad_observations() -> list[ModalityObservation]:
    return [
        make_observation(Modality.FACIAL, [0.1, 0.6, 0.1, 0.05, 0.05, 0.05, 0.05], 0.8),
        make_observation(Modality.VOICE, [0.1, 0.5, 0.15, 0.1, 0.05, 0.05, 0.05], 0.7),
    ]


@pytest.fixture
def store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def pipeline(store: InMemoryProfileStore) -> FusionPipeline:
    return FusionPipeline(store)


@pytest.fixture
def history() -> list[FusionResult]:
    labels = ["happy", "happy", "sad", "neutral", "happy", "angry", "happy"]
    return [
        make_result(label, overall=0.6 + 0.05 * (i % 3), timestamp=FIXED_TS + timedelta(hours=i))
        for i, label in enumerate(labels)
    ]
