"""Analysis helpers — pandas-based mood analytics over fusion history."""

from __future__ import annotations

from datetime import timedelta
from typing import Sequence

import pandas as pd

from moodsync.fusion.context import get_time_of_day
from moodsync.fusion.models import FusionResult

_COLUMNS = ["label", "probability", "overall", "agreement", "location", "activity", "time_of_day"]


def history_to_dataframe(history: Sequence[FusionResult]) -> pd.DataFrame:
    """Load fusion results into a :class:`pandas.DataFrame`.

    Columns: ``label``, ``probability``, ``overall``, ``agreement``,
    ``location``, ``activity``, ``time_of_day``.  The ``timestamp`` column
    is set as the index for easy time-series work.
    """
    records = [
        {
            "timestamp": r.timestamp,
            "label": r.primary_emotion.label.value,
            "probability": r.primary_emotion.probability,
            "overall": r.confidence.overall,
            "agreement": r.confidence.agreement,
            "location": r.context_snapshot.get("location"),
            "activity": r.context_snapshot.get("activity"),
            "time_of_day": r.context_snapshot.get("time_of_day")
            or get_time_of_day(r.timestamp.hour).value,
        }
        for r in history
    ]
    if not records:
        return pd.DataFrame(columns=_COLUMNS, index=pd.DatetimeIndex([], name="timestamp"))

    df = pd.DataFrame(records)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    return df.set_index("timestamp").sort_index()


def mood_trends(df: pd.DataFrame, days: int = 7) -> pd.DataFrame:
    """Per-day, per-label counts and mean confidence over the last *days* days.

    The window ends at the latest timestamp in *df*.
    """
    if df.empty:
        return pd.DataFrame(columns=["date", "label", "count", "avg_confidence"])

    start = df.index.max() - timedelta(days=days)
    recent = df[df.index >= start]
    grouped = (
        recent.assign(date=recent.index.strftime("%Y-%m-%d"))
        .groupby(["date", "label"])
        .agg(count=("label", "size"), avg_confidence=("overall", "mean"))
        .reset_index()
        .sort_values(["date", "label"])
    )
    return grouped.reset_index(drop=True)


def hourly_pattern(df: pd.DataFrame) -> pd.DataFrame:
    """Count of each label per hour of day."""
    if df.empty:
        return pd.DataFrame(columns=["hour", "label", "count"])

    return (
        df.assign(hour=df.index.hour)
        .groupby(["hour", "label"])
        .size()
        .rename("count")
        .reset_index()
        .sort_values(["hour", "label"])
        .reset_index(drop=True)
    )


def context_correlations(df: pd.DataFrame) -> pd.DataFrame:
    """Label × location × activity × time-of-day counts, most frequent first."""
    keys = ["label", "location", "activity", "time_of_day"]
    if df.empty:
        return pd.DataFrame(columns=[*keys, "count", "avg_confidence"])

    return (
        df.fillna({"location": "unknown", "activity": "unknown"})
        .groupby(keys)
        .agg(count=("label", "size"), avg_confidence=("overall", "mean"))
        .reset_index()
        .sort_values("count", ascending=False, kind="stable")
        .reset_index(drop=True)
    )
