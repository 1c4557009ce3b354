"""
Image classifier adapter.
Sends one sampled frame to an external NSFW classification service and
returns per-class probabilities.
"""

import logging
from typing import Dict, Iterable, List, Optional, Protocol

import httpx

from reelgate.lib.transcoder import Frame
from reelgate.models.media import Prediction, UNSAFE_CLASSES

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0


class ClassifierError(RuntimeError):
    """Classifier call failed (timeout, HTTP error or malformed body)."""


class ImageClassifier(Protocol):
    """Classifier interface for dependency injection."""

    async def classify(self, frame: Frame) -> List[Prediction]:
        ...


class NullClassifier:
    """Classifier that never reports anything. For dry runs without a model."""

    async def classify(self, frame: Frame) -> List[Prediction]:
        return []


class HttpImageClassifier:
    """
    Classifier served over HTTP.

    POSTs the frame as image/jpeg and expects a JSON list of
    {"className": str, "probability": float} objects. Without an injected
    client, one AsyncClient is opened on first use and reused until aclose();
    the client is bound to the event loop it was opened on.
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = REQUEST_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = httpx.Timeout(timeout_seconds, connect=timeout_seconds)
        self._client = client
        self._owns_client = client is None

    def _session(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def classify(self, frame: Frame) -> List[Prediction]:
        try:
            response = await self._post(self._session(), frame)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise ClassifierError(f"Classifier request failed for frame {frame.index}: {e}") from e
        except ValueError as e:
            raise ClassifierError(f"Classifier returned invalid JSON for frame {frame.index}: {e}") from e

        return parse_predictions(body)

    async def _post(self, client: httpx.AsyncClient, frame: Frame) -> httpx.Response:
        return await client.post(
            self.url,
            content=frame.jpeg,
            headers={"Content-Type": "image/jpeg"},
            timeout=self.timeout,
        )

    async def aclose(self):
        """Close the client this classifier opened. Injected clients belong to the caller."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def parse_predictions(body) -> List[Prediction]:
    """Validate a classifier response body."""
    if isinstance(body, dict):
        body = body.get("predictions", [])
    if not isinstance(body, list):
        raise ClassifierError(f"Unexpected classifier response: {type(body).__name__}")

    predictions = []
    for item in body:
        try:
            predictions.append(Prediction(
                class_name=str(item.get("className") or item.get("class_name")).lower(),
                probability=float(item["probability"]),
            ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ClassifierError(f"Malformed prediction {item!r}: {e}") from e
    return predictions


def aggregate_predictions(classes: Dict[str, float], predictions: Iterable[Prediction]) -> float:
    """
    Fold one frame's predictions into running per-class maxima (in place).
    Returns the frame's highest unsafe-class probability.
    """
    frame_max = 0.0
    for p in predictions:
        classes[p.class_name] = max(classes.get(p.class_name, 0.0), p.probability)
        if p.class_name in UNSAFE_CLASSES:
            frame_max = max(frame_max, p.probability)
    return frame_max
