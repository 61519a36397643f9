"""Personality adjustment and slow online trait evolution."""

from __future__ import annotations

from typing import Sequence

import structlog

from moodsync.errors import SchemaMismatchError
from moodsync.fusion.core import DEFAULT_TOLERANCE, normalize_distribution
from moodsync.models import (
    EMOTION_LABELS,
    TRAIT_NAMES,
    EmotionLabel,
    PersonalityProfile,
    utcnow,
)

logger = structlog.get_logger(__name__)

# label → (trait, gain): probability *= 1 + trait * gain
PERSONALITY_FACTORS: dict[EmotionLabel, tuple[str, float]] = {
    EmotionLabel.HAPPY: ("extraversion", 0.2),
    EmotionLabel.SAD: ("neuroticism", 0.3),
    EmotionLabel.ANGRY: ("neuroticism", 0.2),
    EmotionLabel.FEARFUL: ("neuroticism", 0.4),
}

EVOLUTION_RATE = 0.01

# Labels are compared by value; "excited" is not a primary label but is
# accepted for callers that track secondary emotions.
_EXTRAVERSION_LABELS = frozenset({"happy", "excited"})
_NEUROTICISM_LABELS = frozenset({"sad", "angry", "fearful"})


def adjust(
    distribution: Sequence[float],
    personality: PersonalityProfile,
    *,
    tolerance: float = DEFAULT_TOLERANCE,
) -> list[float]:
    """Reweight a fused distribution by the user's traits and renormalise.

    Raises :class:`DegenerateDistributionError` if the reweighted vector
    sums to zero.
    """
    if len(distribution) != len(EMOTION_LABELS):
        raise SchemaMismatchError(
            f"distribution has {len(distribution)} entries, expected {len(EMOTION_LABELS)}"
        )
    adjusted = list(distribution)
    for label, (trait, gain) in PERSONALITY_FACTORS.items():
        i = EMOTION_LABELS.index(label)
        adjusted[i] *= 1 + getattr(personality, trait) * gain
    return normalize_distribution(adjusted, tolerance=tolerance)


def evolve(
    profile: PersonalityProfile,
    primary_label: EmotionLabel | str,
    *,
    rate: float = EVOLUTION_RATE,
) -> PersonalityProfile:
    """Drift the trait vector after a fusion outcome.

    Positive outcomes raise extraversion, negative ones raise neuroticism.
    Traits never decrease (monotone drift); all five are clamped to [0, 1].
    Returns a new profile.
    """
    label = primary_label.value if isinstance(primary_label, EmotionLabel) else str(primary_label)

    traits = {name: getattr(profile, name) for name in TRAIT_NAMES}
    if label in _EXTRAVERSION_LABELS:
        traits["extraversion"] += rate
    elif label in _NEUROTICISM_LABELS:
        traits["neuroticism"] += rate
    traits = {name: max(0.0, min(1.0, value)) for name, value in traits.items()}

    updated = profile.model_copy(
        update={
            **traits,
            "last_updated": utcnow(),
            "version": profile.version + 1,
        }
    )
    logger.debug(
        "personality.evolved",
        user=profile.user_id,
        label=label,
        extraversion=round(updated.extraversion, 4),
        neuroticism=round(updated.neuroticism, 4),
    )
    return updated
