"""NSFW image classification engine.

The engine owns threshold logic: it turns raw per-class probabilities into a
``ClassificationResult`` saying whether the image is safe. Callers never
tune thresholds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import numpy as np

from photogate.ml.preprocessing import load_image, preprocess_for_classification

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from photogate.ml.image_ref import ImageRef
    from photogate.ml.inference import InferencePool
    from photogate.ml.model_manager import ModelSpec

logger = logging.getLogger(__name__)


class NSFWClass(StrEnum):
    DRAWING = "Drawing"
    HENTAI = "Hentai"
    NEUTRAL = "Neutral"
    PORN = "Porn"
    SEXY = "Sexy"


# A class is unsafe when its probability is strictly above its threshold.
DEFAULT_THRESHOLDS: dict[NSFWClass, float] = {
    NSFWClass.DRAWING: 1.0,
    NSFWClass.HENTAI: 0.3,
    NSFWClass.NEUTRAL: 1.0,
    NSFWClass.PORN: 0.3,
    NSFWClass.SEXY: 0.7,
}


@dataclass(frozen=True)
class Prediction:
    """Probability assigned to a single class."""

    label: NSFWClass
    probability: float


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of one classification call. Never cached."""

    is_safe: bool
    confidence: float
    predictions: tuple[Prediction, ...] = field(default=())
    highest_risk: Prediction | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")


class ClassificationEngine(Protocol):
    """Protocol for moderation classifiers."""

    async def classify(self, image_ref: ImageRef) -> ClassificationResult:
        """Classify the image behind ``image_ref``."""
        ...


def parse_thresholds(raw: Mapping[str, float]) -> dict[NSFWClass, float]:
    """Convert configured thresholds into a complete per-class mapping."""
    thresholds = dict(DEFAULT_THRESHOLDS)
    for name, value in raw.items():
        try:
            label = NSFWClass(name)
        except ValueError:
            raise KeyError(f"Unknown NSFW class: {name}") from None
        thresholds[label] = float(value)
    return thresholds


def evaluate_predictions(
    predictions: Iterable[Prediction],
    thresholds: Mapping[NSFWClass, float] = DEFAULT_THRESHOLDS,
) -> ClassificationResult:
    """Apply per-class thresholds to a set of predictions."""
    predictions = tuple(predictions)
    unsafe = [p for p in predictions if p.probability > thresholds.get(p.label, 1.0)]
    highest_risk = max(unsafe, key=lambda p: p.probability) if unsafe else None
    return ClassificationResult(
        is_safe=not unsafe,
        confidence=highest_risk.probability if highest_risk else 0.0,
        predictions=predictions,
        highest_risk=highest_risk,
    )


def to_probabilities(scores: NDArray[np.float32], *, logits: bool = False) -> NDArray[np.float32]:
    """Flatten one model output row into per-class probabilities.

    ``logits`` is set for models exported without a softmax head; their raw
    scores are normalized. Softmax outputs are only clipped to [0, 1].
    """
    scores = np.asarray(scores, dtype=np.float32).ravel()
    if not logits:
        return np.clip(scores, 0.0, 1.0)
    shifted = np.exp(scores - scores.max())
    return np.clip(shifted / shifted.sum(), 0.0, 1.0).astype(np.float32)


class OnnxNSFWClassifier:
    """Five-class NSFW classifier backed by an ONNX Runtime session."""

    def __init__(
        self,
        session: InferenceSession,
        spec: ModelSpec,
        pool: InferencePool,
        *,
        thresholds: Mapping[NSFWClass, float] = DEFAULT_THRESHOLDS,
        max_image_pixels: int,
        max_file_size: int,
    ) -> None:
        self._session = session
        self._spec = spec
        self._pool = pool
        self._thresholds = dict(thresholds)
        self._max_image_pixels = max_image_pixels
        self._max_file_size = max_file_size
        self._input_name: str = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._spec.name

    async def classify(self, image_ref: ImageRef) -> ClassificationResult:
        """Classify an image off the event loop.

        Raises:
            InvalidImageError: If the image cannot be decoded.
            TimeoutError: If no inference slot frees up in time.
        """
        return await self._pool.run(self._classify_sync, image_ref)

    def _classify_sync(self, image_ref: ImageRef) -> ClassificationResult:
        image = load_image(
            image_ref,
            max_image_pixels=self._max_image_pixels,
            max_file_size=self._max_file_size,
        )
        tensor = preprocess_for_classification(image, self._spec.input_size, self._spec.layout)
        outputs = self._session.run(None, {self._input_name: tensor})
        probabilities = to_probabilities(outputs[0][0], logits=self._spec.outputs_logits)
        if len(probabilities) != len(self._spec.labels):
            raise RuntimeError(f"{self._spec.name} returned {len(probabilities)} scores, expected {len(self._spec.labels)}")

        predictions = [
            Prediction(label=label, probability=float(prob))
            for label, prob in zip(self._spec.labels, probabilities, strict=True)
        ]
        result = evaluate_predictions(predictions, self._thresholds)
        logger.debug("Classified %s: safe=%s confidence=%.3f", image_ref.uri, result.is_safe, result.confidence)
        return result
