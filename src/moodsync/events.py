"""Fusion events — synchronous fan-out to downstream subscribers.

Architecture
~~~~~~~~~~~~
* **FusionEvent** — emitted once after every successful fusion.
* **EventDispatcher** — calls each subscriber in registration order with
  error isolation and returns a :class:`DispatchResult`.

Subscribers are plain callables ``(FusionEvent) -> None``.  A subscriber
that raises is logged and reported as failed; the remaining subscribers
still run and the fusion result is unaffected.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import structlog
from pydantic import BaseModel, Field

from moodsync.fusion.models import FusionResult
from moodsync.models import utcnow

logger = structlog.get_logger(__name__)


class FusionEvent(BaseModel):
    """Published after a fusion result has been produced."""

    user_id: str
    result: FusionResult
    emitted_at: datetime = Field(default_factory=utcnow)


Subscriber = Callable[[FusionEvent], None]


# ── Dispatch result ───────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome summary for a single ``publish()`` call."""

    result_id: str
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return len(self.failed) == 0


# ── Dispatcher ────────────────────────────────────────────────


def _subscriber_name(fn: Subscriber) -> str:
    return getattr(fn, "__qualname__", None) or type(fn).__name__


class EventDispatcher:
    """Fan a :class:`FusionEvent` out to every registered subscriber."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    def subscribe(self, fn: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(fn)

    def unsubscribe(self, fn: Subscriber) -> bool:
        with self._lock:
            before = len(self._subscribers)
            self._subscribers = [s for s in self._subscribers if s is not fn]
            return len(self._subscribers) < before

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: FusionEvent) -> DispatchResult:
        with self._lock:
            subscribers = list(self._subscribers)

        delivered: list[str] = []
        failed: list[str] = []
        for fn in subscribers:
            name = _subscriber_name(fn)
            try:
                fn(event)
                delivered.append(name)
            except Exception as exc:
                logger.error(
                    "events.subscriber_error",
                    subscriber=name,
                    user=event.user_id,
                    error=str(exc),
                )
                failed.append(name)

        if subscribers:
            logger.debug(
                "events.published",
                user=event.user_id,
                delivered=len(delivered),
                failed=len(failed),
            )
        return DispatchResult(result_id=event.result.id, delivered=delivered, failed=failed)
