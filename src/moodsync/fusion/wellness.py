"""Wellness / trend analysis over a rolling window of fusion results.

Trend metrics (dominant emotion, diversity, stability) need at least one
past result.  The wellness score only needs the current result and blends
in the recent positive-emotion ratio when history is available.
"""

from __future__ import annotations

import math
import statistics
from collections import Counter
from dataclasses import dataclass
from typing import Sequence

import structlog

from moodsync.errors import NoHistoryError
from moodsync.fusion.confidence import analyze_current_emotion
from moodsync.fusion.models import FusionResult, WellnessLevel, WellnessReport
from moodsync.models import EmotionLabel

logger = structlog.get_logger(__name__)

POSITIVE_EMOTIONS = frozenset({"happy", "excited", "content", "calm"})

DEFAULT_WINDOW_SIZE = 10
DEFAULT_RECENT_COUNT = 5
HIGH_THRESHOLD = 0.7
MEDIUM_THRESHOLD = 0.4

_POSITIVE_BASE = 0.7
_NEGATIVE_BASE = 0.3

TREND_FIELDS = ("dominant_emotion", "diversity", "stability")


@dataclass(frozen=True, slots=True)
class TrendSummary:
    """Trend metrics over a non-empty window."""

    dominant_emotion: EmotionLabel
    diversity: int
    stability: float
    window_size: int


def _is_positive(result: FusionResult) -> bool:
    return result.primary_emotion.label.value in POSITIVE_EMOTIONS


def emotional_stability(results: Sequence[FusionResult]) -> float:
    """``1 - sqrt(population variance)`` of overall confidence."""
    if len(results) < 2:
        return 1.0
    variance = statistics.pvariance([r.confidence.overall for r in results])
    return 1.0 - math.sqrt(variance)


def analyze_trends(
    history: Sequence[FusionResult],
    *,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> TrendSummary:
    """Compute dominant emotion, diversity and stability for the last
    *window_size* results.

    Raises :class:`NoHistoryError` on an empty history.
    """
    window = list(history)[-window_size:]
    if not window:
        raise NoHistoryError("trend metrics require at least one past result")

    counts = Counter(r.primary_emotion.label for r in window)
    dominant, _ = counts.most_common(1)[0]
    return TrendSummary(
        dominant_emotion=dominant,
        diversity=len(counts),
        stability=emotional_stability(window),
        window_size=len(window),
    )


def wellness_score(
    current: FusionResult,
    history: Sequence[FusionResult] = (),
    *,
    recent_count: int = DEFAULT_RECENT_COUNT,
) -> float:
    """Blend current valence × confidence with the recent positive ratio."""
    base = _POSITIVE_BASE if _is_positive(current) else _NEGATIVE_BASE
    score = base * current.confidence.overall
    if history:
        recent = list(history)[-recent_count:]
        positives = sum(1 for r in recent if _is_positive(r))
        score = (score + positives / recent_count) / 2
    return max(0.0, min(1.0, score))


def wellness_level(
    score: float,
    *,
    high_threshold: float = HIGH_THRESHOLD,
    medium_threshold: float = MEDIUM_THRESHOLD,
) -> WellnessLevel:
    if score > high_threshold:
        return WellnessLevel.HIGH
    if score > medium_threshold:
        return WellnessLevel.MEDIUM
    return WellnessLevel.LOW


def build_wellness_report(
    user_id: str,
    history: Sequence[FusionResult],
    current: FusionResult | None = None,
    *,
    window_size: int = DEFAULT_WINDOW_SIZE,
    recent_count: int = DEFAULT_RECENT_COUNT,
    high_threshold: float = HIGH_THRESHOLD,
    medium_threshold: float = MEDIUM_THRESHOLD,
) -> WellnessReport:
    """Assemble the full wellness report.

    ``current`` defaults to the last entry of *history*.  With an empty
    history the trend fields are omitted (listed in ``missing_fields``) and
    the score is computed from *current* alone.  Raises
    :class:`NoHistoryError` when there is neither history nor a current
    result.
    """
    history = list(history)
    if current is None:
        if not history:
            raise NoHistoryError("no current result and no history to report on")
        current = history[-1]

    score = wellness_score(current, history, recent_count=recent_count)
    report = WellnessReport(
        user_id=user_id,
        wellness_score=score,
        level=wellness_level(score, high_threshold=high_threshold, medium_threshold=medium_threshold),
        current=analyze_current_emotion(current),
    )

    try:
        trends = analyze_trends(history, window_size=window_size)
    except NoHistoryError:
        logger.info("wellness.no_history", user=user_id)
        report.missing_fields = list(TREND_FIELDS)
        return report

    report.dominant_emotion = trends.dominant_emotion
    report.diversity = trends.diversity
    report.stability = trends.stability
    report.window_size = trends.window_size
    logger.info(
        "wellness.report_built",
        user=user_id,
        score=round(score, 3),
        level=report.level.value,
        dominant=trends.dominant_emotion.value,
        window=trends.window_size,
    )
    return report
