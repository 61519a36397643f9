"""Context encoder — situational signals to a fixed-width numeric vector.

Slot layout (width 20 by default)
---------------------------------
=======  ==================================================
Slot     Meaning
=======  ==================================================
0        hour / 24
1        weekday / 7 (Sunday = 0)
2–4      location one-hot: home, work, other
5–10     activity one-hot: working … sleeping
11–14    time-of-day band one-hot: morning … night
15       weekend flag
16–19    reserved (zero)
=======  ==================================================

Unrecognised categories leave their slots at zero.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from moodsync.models import (
    ActivityCategory,
    ContextSignals,
    LocationCategory,
    TimeOfDay,
    utcnow,
)

CONTEXT_WIDTH = 20

_LOCATION_OFFSET = 2
_ACTIVITY_OFFSET = _LOCATION_OFFSET + len(LocationCategory)
_TOD_OFFSET = _ACTIVITY_OFFSET + len(ActivityCategory)
_WEEKEND_SLOT = _TOD_OFFSET + len(TimeOfDay)
_MIN_WIDTH = _WEEKEND_SLOT + 1

_LOCATIONS = list(LocationCategory)
_ACTIVITIES = list(ActivityCategory)
_TIMES_OF_DAY = list(TimeOfDay)


def get_time_of_day(hour: int) -> TimeOfDay:
    """Return the time-of-day band for an hour (0-23)."""
    if 5 <= hour < 12:
        return TimeOfDay.MORNING
    if 12 <= hour < 17:
        return TimeOfDay.AFTERNOON
    if 17 <= hour < 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def _category_index(value: str | None, categories: list[Any]) -> int | None:
    if not value:
        return None
    try:
        return categories.index(type(categories[0])(value.lower()))
    except ValueError:
        return None


def _resolve_time(context: ContextSignals | None, now: datetime | None) -> datetime:
    if context is not None and context.timestamp is not None:
        return context.timestamp
    return now or utcnow()


def encode_context(
    context: ContextSignals | None,
    *,
    width: int = CONTEXT_WIDTH,
    now: datetime | None = None,
) -> list[float]:
    """Encode *context* into a vector of length *width*."""
    if width < _MIN_WIDTH:
        raise ValueError(f"context width must be at least {_MIN_WIDTH}, got {width}")

    encoded = [0.0] * width
    ts = _resolve_time(context, now)
    weekday = ts.isoweekday() % 7  # Sunday = 0

    encoded[0] = ts.hour / 24
    encoded[1] = weekday / 7

    if context is not None:
        loc = _category_index(context.location, _LOCATIONS)
        if loc is not None:
            encoded[_LOCATION_OFFSET + loc] = 1.0
        act = _category_index(context.activity, _ACTIVITIES)
        if act is not None:
            encoded[_ACTIVITY_OFFSET + act] = 1.0

    encoded[_TOD_OFFSET + _TIMES_OF_DAY.index(get_time_of_day(ts.hour))] = 1.0
    if weekday in (0, 6):
        encoded[_WEEKEND_SLOT] = 1.0
    return encoded


def context_snapshot(
    context: ContextSignals | None,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Serialisable summary of the context a result was produced in."""
    ts = _resolve_time(context, now)
    return {
        "timestamp": ts.isoformat(),
        "location": context.location if context else None,
        "activity": context.activity if context else None,
        "time_of_day": get_time_of_day(ts.hour).value,
        "tags": list(context.tags) if context else [],
    }
