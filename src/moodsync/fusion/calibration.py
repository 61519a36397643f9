"""Calibrator — per-user, per-modality bias correction learned from feedback.

Bias is additive and applied before fusion.  Feedback nudges the bias of
the confirmed label upwards by ``adaptation_rate * step``.  Accumulation is
unbounded unless a ``bias_limit`` is given.
"""

from __future__ import annotations

import structlog

from moodsync.errors import UnknownLabelError, UnknownModalityError
from moodsync.models import (
    EMOTION_LABELS,
    CalibrationProfile,
    EmotionLabel,
    Modality,
    ModalityObservation,
    utcnow,
)

logger = structlog.get_logger(__name__)

FEEDBACK_STEP = 0.1


def _clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def apply_bias(
    observation: ModalityObservation,
    profile: CalibrationProfile | None,
) -> list[float]:
    """Return the bias-corrected probability vector for one observation.

    ``calibrated[i] = clamp(raw[i] + bias[i] * adaptation_rate, 0, 1)``.
    The vector is *not* renormalised.
    """
    raw = observation.raw_probabilities
    if profile is None:
        return list(raw)

    bias = profile.bias_for(observation.modality)
    rate = profile.adaptation_rate
    return [_clamp(p + b * rate) for p, b in zip(raw, bias)]


def resolve_label(label: EmotionLabel | str) -> int:
    """Return the vector index of *label* or raise :class:`UnknownLabelError`."""
    try:
        return EMOTION_LABELS.index(EmotionLabel(label))
    except ValueError:
        raise UnknownLabelError(
            f"unknown emotion label {label!r}; expected one of "
            f"{[e.value for e in EMOTION_LABELS]}"
        ) from None


def resolve_modality(modality: Modality | str) -> Modality:
    """Return *modality* as a :class:`Modality` or raise :class:`UnknownModalityError`."""
    try:
        return Modality(modality)
    except ValueError:
        raise UnknownModalityError(
            f"unknown modality {modality!r}; expected one of {[m.value for m in Modality]}"
        ) from None


def update_from_feedback(
    profile: CalibrationProfile,
    modality: Modality | str,
    correct_label: EmotionLabel | str | None,
    *,
    step: float = FEEDBACK_STEP,
    bias_limit: float | None = None,
) -> CalibrationProfile:
    """Shift the bias of *modality* towards the user-confirmed label.

    Returns a new profile; the input is left untouched.  Absent feedback
    (``correct_label is None``) returns the profile unchanged.
    """
    if correct_label is None:
        return profile

    index = resolve_label(correct_label)
    modality = resolve_modality(modality)

    bias = profile.bias_for(modality)
    bias[index] += profile.adaptation_rate * step
    if bias_limit is not None:
        bias[index] = min(bias[index], bias_limit)

    per_modality = {m: list(v) for m, v in profile.per_modality_bias.items()}
    per_modality[modality] = bias

    updated = profile.model_copy(
        update={
            "per_modality_bias": per_modality,
            "version": profile.version + 1,
            "updated_at": utcnow(),
        }
    )
    logger.info(
        "calibration.feedback_applied",
        user=profile.user_id,
        modality=modality.value,
        label=EMOTION_LABELS[index].value,
        bias=round(bias[index], 4),
    )
    return updated
