"""HTTP classifier — call a remote model service's ``/predict`` endpoint."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from moodsync.classifiers.base import ModalityClassifier
from moodsync.models import ClassifierOutput, Modality

logger = structlog.get_logger(__name__)


class HttpModalityClassifier(ModalityClassifier):
    """POST the input to ``<base_url>/predict`` and parse the prediction.

    Request body::

        {"modality": "voice", "input": <payload>}

    Expected response::

        {"probabilities": [7 floats], "confidence": 0.82}

    Parameters
    ----------
    modality : Modality
        Channel served by the remote model.
    base_url : str
        Root URL of the model service.
    timeout : float
        Per-request timeout in seconds.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (used by tests).
    """

    def __init__(
        self,
        modality: Modality | str,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.modality = Modality(modality)
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self._base_url, timeout=timeout, transport=transport,
        )

    @property
    def predict_endpoint(self) -> str:
        return f"{self._base_url}/predict"

    async def predict(self, payload: Any) -> ClassifierOutput:
        resp = await self._client.post(
            "/predict", json={"modality": self.modality.value, "input": payload},
        )
        resp.raise_for_status()
        output = ClassifierOutput.model_validate(resp.json())
        logger.debug(
            "classifier.http_prediction",
            modality=self.modality.value,
            url=self.predict_endpoint,
            confidence=output.confidence,
        )
        return output

    async def close(self) -> None:
        await self._client.aclose()
