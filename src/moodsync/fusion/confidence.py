"""Confidence / agreement evaluation and emotion ranking."""

from __future__ import annotations

from itertools import combinations
from typing import Sequence

from moodsync.fusion.core import argmax
from moodsync.fusion.models import (
    ConfidenceScores,
    CurrentEmotionAnalysis,
    EmotionScore,
    FusionResult,
)
from moodsync.models import EMOTION_LABELS, Modality, ModalityObservation

HIGH_CONFIDENCE_THRESHOLD = 0.7


def modality_agreement(observations: Sequence[ModalityObservation]) -> float:
    """Fraction of observation pairs whose raw argmax label matches.

    Defined as 1.0 when fewer than two observations are present.
    """
    if len(observations) < 2:
        return 1.0
    predictions = [argmax(obs.raw_probabilities) for obs in observations]
    pairs = list(combinations(predictions, 2))
    matches = sum(1 for a, b in pairs if a == b)
    return matches / len(pairs)


def evaluate_confidence(
    observations: Sequence[ModalityObservation],
    adjusted: Sequence[float],
) -> ConfidenceScores:
    """Combine classifier, fusion and agreement confidence into one score."""
    modality_conf = sum(obs.confidence for obs in observations) / len(observations)
    fusion_conf = min(max(adjusted), 1.0)
    agreement = modality_agreement(observations)
    return ConfidenceScores(
        overall=(modality_conf + fusion_conf + agreement) / 3,
        modality=modality_conf,
        fusion=fusion_conf,
        agreement=agreement,
    )


def modality_contributions(
    observations: Sequence[ModalityObservation],
) -> dict[Modality, float]:
    """Share of total classifier confidence per modality (sums to 1).

    If every confidence is zero the weight is split equally.
    """
    total = sum(obs.confidence for obs in observations)
    if total <= 0.0:
        share = 1.0 / len(observations)
        return {obs.modality: share for obs in observations}
    return {obs.modality: obs.confidence / total for obs in observations}


def rank_emotions(distribution: Sequence[float]) -> tuple[EmotionScore, list[EmotionScore]]:
    """Return the primary emotion and the next two by probability."""
    ranked = sorted(
        (
            EmotionScore(label=label, probability=min(p, 1.0))
            for label, p in zip(EMOTION_LABELS, distribution)
        ),
        key=lambda s: s.probability,
        reverse=True,
    )
    return ranked[0], ranked[1:3]


def analyze_current_emotion(result: FusionResult) -> CurrentEmotionAnalysis:
    """Summarise intensity, stability and authenticity of one result."""
    conf = result.confidence
    return CurrentEmotionAnalysis(
        dominant=result.primary_emotion,
        intensity=conf.overall,
        stability=conf.agreement,
        complexity=len(result.secondary_emotions),
        authenticity=(conf.agreement + conf.overall) / 2,
        high_confidence=conf.overall >= HIGH_CONFIDENCE_THRESHOLD,
    )
