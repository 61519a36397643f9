"""Concurrent per-modality classification with timeouts.

Every requested modality runs as its own task.  A modality that raises,
returns a malformed vector or exceeds the timeout is dropped from the
observation set; the caller decides whether what remains is enough.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping

import structlog

from moodsync.classifiers.base import ModalityClassifier
from moodsync.fusion.adapter import normalize
from moodsync.models import ContextSignals, Modality, ModalityObservation

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class CollectionResult:
    """Observations gathered for one request plus the reasons for any drops."""

    observations: list[ModalityObservation] = field(default_factory=list)
    dropped: dict[Modality, str] = field(default_factory=dict)

    @property
    def modalities(self) -> list[Modality]:
        return [obs.modality for obs in self.observations]


async def _observe(
    classifier: ModalityClassifier,
    modality: Modality,
    payload: Any,
    context: ContextSignals | None,
    timeout: float,
) -> ModalityObservation:
    output = await asyncio.wait_for(classifier.predict(payload), timeout=timeout)
    return normalize(output, modality, context)


def _reason(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "timeout"
    if isinstance(exc, asyncio.CancelledError):
        return "cancelled"
    return f"{type(exc).__name__}: {exc}"


async def collect_observations(
    classifiers: Mapping[Modality, ModalityClassifier],
    inputs: Mapping[Modality | str, Any],
    context: ContextSignals | None = None,
    *,
    timeout: float = 1.5,
) -> CollectionResult:
    """Run the classifier of every modality in *inputs* concurrently.

    Parameters
    ----------
    classifiers
        Classifier per modality.
    inputs
        Raw payload per requested modality (image reference, audio
        features, text, vitals, …).
    context
        Situational context, used to tag the observations.
    timeout
        Per-modality timeout in seconds.
    """
    result = CollectionResult()
    modalities: list[Modality] = []
    tasks = []
    for key, payload in inputs.items():
        modality = Modality(key)
        classifier = classifiers.get(modality)
        if classifier is None:
            result.dropped[modality] = "no classifier registered"
            logger.warning("classifier.missing", modality=modality.value)
            continue
        modalities.append(modality)
        tasks.append(_observe(classifier, modality, payload, context, timeout))

    outcomes = await asyncio.gather(*tasks, return_exceptions=True)

    for modality, outcome in zip(modalities, outcomes):
        if isinstance(outcome, BaseException):
            reason = _reason(outcome)
            result.dropped[modality] = reason
            logger.warning("classifier.dropped", modality=modality.value, reason=reason)
        else:
            result.observations.append(outcome)

    logger.info(
        "classifier.collection_complete",
        requested=len(inputs),
        observed=[m.value for m in result.modalities],
        dropped=sorted(m.value for m in result.dropped),
    )
    return result
