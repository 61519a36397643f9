"""Abstract base class for all per-modality emotion classifiers."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Sequence, Union

from moodsync.models import ClassifierOutput, Modality

RawPrediction = Union[ClassifierOutput, tuple[Sequence[float], float], Sequence[float]]


def coerce_output(raw: RawPrediction) -> ClassifierOutput:
    """Accept the common return shapes of classifier callables.

    ``ClassifierOutput``, a ``(probabilities, confidence)`` pair, or a bare
    probability vector.
    """
    if isinstance(raw, ClassifierOutput):
        return raw
    if isinstance(raw, tuple) and len(raw) == 2 and not isinstance(raw[1], (list, tuple)):
        probabilities, confidence = raw
        return ClassifierOutput(probabilities=list(probabilities), confidence=confidence)
    return ClassifierOutput(probabilities=list(raw))


class ModalityClassifier(ABC):
    """Contract that every modality classifier must implement.

    A classifier wraps an external model (facial, voice, text or biometric)
    and returns a probability vector already aligned to the emotion label
    set, plus a scalar confidence.
    """

    modality: Modality

    @abstractmethod
    async def predict(self, payload: Any) -> ClassifierOutput:
        """Run the model on one input and return its prediction."""

    async def close(self) -> None:
        """Release any resources held by the classifier."""


class FunctionClassifier(ModalityClassifier):
    """Adapt a synchronous callable into a classifier.

    The callable runs in a worker thread so blocking model code does not
    stall the event loop.
    """

    def __init__(self, modality: Modality | str, fn: Callable[[Any], RawPrediction]) -> None:
        self.modality = Modality(modality)
        self._fn = fn

    async def predict(self, payload: Any) -> ClassifierOutput:
        raw = await asyncio.to_thread(self._fn, payload)
        return coerce_output(raw)
