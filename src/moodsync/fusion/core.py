"""Fusion core — join calibrated modality vectors into one distribution.

The fusion input is a flat vector::

    [facial(7) | voice(7) | text(7) | biometric(7) | context(W) | O C E A N]

Modalities missing from the request are zero-padded so the width is fixed
(53 with the default context width).  The vector is handed to an external
:class:`FusionPredictor`; its output is validated and renormalised here.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Sequence

import structlog

from moodsync.errors import (
    DegenerateDistributionError,
    InsufficientInputError,
    SchemaMismatchError,
)
from moodsync.fusion.context import CONTEXT_WIDTH, encode_context
from moodsync.models import (
    EMOTION_LABELS,
    MODALITY_ORDER,
    ContextSignals,
    Modality,
    ModalityObservation,
    PersonalityProfile,
)

logger = structlog.get_logger(__name__)

DEFAULT_TOLERANCE = 1e-6
_N_LABELS = len(EMOTION_LABELS)


# ── Predictor contract ───────────────────────────────────────


class FusionPredictor(ABC):
    """Black-box learned model: feature vector in, label-aligned distribution out."""

    @abstractmethod
    def predict(self, features: Sequence[float]) -> Sequence[float]:
        """Return a probability vector over the emotion labels."""


class MeanPoolingPredictor(FusionPredictor):
    """Deterministic baseline: average the non-empty modality slices.

    Context and personality features are ignored.  Useful when no trained
    fusion model is deployed.
    """

    def predict(self, features: Sequence[float]) -> Sequence[float]:
        slices = [
            list(features[i * _N_LABELS:(i + 1) * _N_LABELS])
            for i in range(len(MODALITY_ORDER))
        ]
        present = [s for s in slices if any(v > 0.0 for v in s)]
        if not present:
            return [0.0] * _N_LABELS
        return [sum(col) / len(present) for col in zip(*present)]


# ── Distribution helpers ─────────────────────────────────────


def normalize_distribution(
    values: Sequence[float],
    *,
    tolerance: float = DEFAULT_TOLERANCE,
) -> list[float]:
    """Clip negatives to zero and rescale so the vector sums to 1.

    Vectors already summing to 1 within *tolerance* are returned as-is
    (after clipping).  Raises :class:`DegenerateDistributionError` when the
    sum is zero or not finite.
    """
    clipped = [max(0.0, float(v)) for v in values]
    total = sum(clipped)
    if not math.isfinite(total) or total <= 0.0:
        raise DegenerateDistributionError(f"distribution sums to {total!r}")
    if abs(total - 1.0) <= tolerance:
        return clipped
    return [v / total for v in clipped]


def argmax(values: Sequence[float]) -> int:
    """Index of the largest entry (first one on ties)."""
    best = 0
    for i, v in enumerate(values):
        if v > values[best]:
            best = i
    return best


# ── Input assembly ───────────────────────────────────────────


def build_fusion_input(
    observations: Sequence[ModalityObservation],
    calibrated_vectors: Sequence[Sequence[float]],
    context: ContextSignals | None,
    personality: PersonalityProfile,
    *,
    context_width: int = CONTEXT_WIDTH,
) -> list[float]:
    """Concatenate modality slots, context encoding and trait scalars."""
    slots: dict[Modality, list[float]] = {}
    for obs, vector in zip(observations, calibrated_vectors):
        if len(vector) != _N_LABELS:
            raise SchemaMismatchError(
                f"calibrated {obs.modality.value} vector has {len(vector)} entries"
            )
        slots[obs.modality] = list(vector)

    features: list[float] = []
    for modality in MODALITY_ORDER:
        features.extend(slots.get(modality, [0.0] * _N_LABELS))
    features.extend(encode_context(context, width=context_width))
    features.extend(personality.traits())
    return features


# ── Fusion ────────────────────────────────────────────────────


def fuse(
    observations: Sequence[ModalityObservation],
    calibrated_vectors: Sequence[Sequence[float]],
    context: ContextSignals | None,
    personality: PersonalityProfile,
    predictor: FusionPredictor,
    *,
    context_width: int = CONTEXT_WIDTH,
    tolerance: float = DEFAULT_TOLERANCE,
) -> list[float]:
    """Run the external predictor and return a normalised raw distribution.

    Raises
    ------
    InsufficientInputError
        No observation was supplied.
    SchemaMismatchError
        Vectors or predictor output are not label-aligned.
    DegenerateDistributionError
        The predictor returned an all-zero distribution.
    """
    if not observations:
        raise InsufficientInputError("at least one modality observation is required")
    if len(observations) != len(calibrated_vectors):
        raise SchemaMismatchError(
            f"{len(observations)} observations but {len(calibrated_vectors)} calibrated vectors"
        )

    features = build_fusion_input(
        observations, calibrated_vectors, context, personality,
        context_width=context_width,
    )
    output = list(predictor.predict(features))
    if len(output) != _N_LABELS:
        raise SchemaMismatchError(
            f"fusion predictor returned {len(output)} entries, expected {_N_LABELS}"
        )

    total = sum(output)
    if abs(total - 1.0) > tolerance or any(v < 0.0 for v in output):
        logger.warning(
            "fusion.predictor_output_renormalised",
            total=round(total, 6),
            predictor=type(predictor).__name__,
        )
    return normalize_distribution(output, tolerance=tolerance)
