"""Modality adapter — normalise raw classifier output into observations."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Sequence

import structlog

from moodsync.errors import SchemaMismatchError
from moodsync.models import (
    EMOTION_LABELS,
    ClassifierOutput,
    ContextSignals,
    Modality,
    ModalityObservation,
    utcnow,
)

logger = structlog.get_logger(__name__)

# Sentiment (negative, neutral, positive) → emotion weights, label order.
_SENTIMENT_WEIGHTS: tuple[tuple[float, float, float], ...] = (
    (0.0, 0.0, 0.8),  # happy
    (0.6, 0.0, 0.0),  # sad
    (0.4, 0.0, 0.0),  # angry
    (0.2, 0.0, 0.0),  # fearful
    (0.0, 0.0, 0.3),  # surprised
    (0.3, 0.0, 0.0),  # disgusted
    (0.0, 0.9, 0.0),  # neutral
)


def validate_vector(values: Sequence[float], *, source: str) -> list[float]:
    """Check a vector is label-aligned with entries in [0, 1].

    Raises :class:`SchemaMismatchError` otherwise.
    """
    if len(values) != len(EMOTION_LABELS):
        raise SchemaMismatchError(
            f"{source} vector has {len(values)} entries, "
            f"expected {len(EMOTION_LABELS)} ({', '.join(label.value for label in EMOTION_LABELS)})"
        )
    out: list[float] = []
    for i, v in enumerate(values):
        v = float(v)
        if not math.isfinite(v) or v < 0.0 or v > 1.0:
            raise SchemaMismatchError(f"{source} entry {i} is out of range: {v!r}")
        out.append(v)
    return out


def normalize(
    raw_output: ClassifierOutput | Sequence[float],
    modality: Modality | str,
    context: ContextSignals | None = None,
    *,
    timestamp: datetime | None = None,
) -> ModalityObservation:
    """Turn one classifier invocation into a :class:`ModalityObservation`.

    ``raw_output`` may be a :class:`ClassifierOutput` or a bare probability
    vector.  When no confidence is supplied the maximum class probability
    is used.
    """
    modality = Modality(modality)
    if isinstance(raw_output, ClassifierOutput):
        probabilities, confidence = raw_output.probabilities, raw_output.confidence
    else:
        probabilities, confidence = list(raw_output), None

    vector = validate_vector(probabilities, source=modality.value)
    if confidence is None:
        confidence = max(vector)

    tags: list[str] = []
    if context is not None:
        tags.extend(context.tags)
        for category in (context.location, context.activity):
            if category:
                tags.append(category)

    return ModalityObservation(
        modality=modality,
        raw_probabilities=tuple(vector),
        confidence=confidence,
        context_tags=tuple(dict.fromkeys(tags)),
        timestamp=timestamp or utcnow(),
    )


def map_sentiment_to_emotion(sentiment: Sequence[float]) -> list[float]:
    """Map a three-class text sentiment ``[negative, neutral, positive]``
    onto the primary emotion labels.

    The result is label-aligned but not normalised; fusion handles that.
    """
    if len(sentiment) != 3:
        raise SchemaMismatchError(
            f"sentiment vector has {len(sentiment)} entries, expected 3 (negative, neutral, positive)"
        )
    neg, neu, pos = (float(s) for s in sentiment)
    return [w_neg * neg + w_neu * neu + w_pos * pos for w_neg, w_neu, w_pos in _SENTIMENT_WEIGHTS]


def normalize_text_sentiment(
    sentiment: Sequence[float],
    context: ContextSignals | None = None,
    *,
    confidence: float | None = None,
) -> ModalityObservation:
    """Adapter for sentiment-only text classifiers."""
    probabilities = map_sentiment_to_emotion(sentiment)
    logger.debug("adapter.text_sentiment_mapped", sentiment=list(sentiment))
    return normalize(
        ClassifierOutput(probabilities=probabilities, confidence=confidence),
        Modality.TEXT,
        context,
    )
