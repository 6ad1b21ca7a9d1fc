"""Image classification models.

``OnnxImageClassifier`` tags scenes with an ImageNet classifier
(ResNet50 by default) run through ONNX Runtime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from scenelens.ml.model_manager import get_spec
from scenelens.ml.preprocessing import CropAndScale, preprocess_for_classification

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from scenelens.ml.model_manager import ModelManager
    from scenelens.pipeline.state import RawImage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


@dataclass(frozen=True)
class ClassifyOptions:
    """Per-request options for the inference engine.

    ``camera_intrinsics`` is a calibration hint passed through unchanged;
    classifiers that cannot use it ignore it.
    """

    crop_and_scale: CropAndScale = CropAndScale.CENTER_CROP
    camera_intrinsics: NDArray[np.float32] | None = None


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: RawImage, options: ClassifyOptions) -> list[ClassificationResult]:
        """Classify an image and return ranked tags.

        Args:
            image: The raw image, with orientation metadata.
            options: Crop/scale policy and calibration hints.

        Returns:
            List of classification results sorted by confidence (descending).
        """
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / np.sum(exp)


class OnnxImageClassifier:
    """ImageNet-style classifier backed by a cached ONNX Runtime session."""

    def __init__(self, model_manager: ModelManager, model_name: str, top_k: int = 5) -> None:
        self._manager = model_manager
        self._spec = get_spec(model_name)
        self._top_k = top_k
        self._mean = np.array(self._spec.mean, dtype=np.float32)
        self._std = np.array(self._spec.std, dtype=np.float32)
        self._labels = model_manager.get_labels(model_name)

    @property
    def model_name(self) -> str:
        return self._spec.name

    def load(self) -> None:
        """Eagerly create the session so load failures surface at startup."""
        self._manager.get_session(self._spec.name)

    def classify(self, image: RawImage, options: ClassifyOptions) -> list[ClassificationResult]:
        tensor = preprocess_for_classification(
            image.pixels,
            image.orientation,
            self._spec.input_size,
            options.crop_and_scale,
            self._mean,
            self._std,
        )
        session = self._manager.get_session(self._spec.name)
        input_name = session.get_inputs()[0].name
        (logits,) = session.run(None, {input_name: tensor})[:1]

        scores = np.asarray(logits, dtype=np.float32).reshape(-1)
        if scores.shape[0] != len(self._labels):
            raise ValueError(f"Model produced {scores.shape[0]} scores for {len(self._labels)} labels")

        probabilities = softmax(scores)
        top = np.argsort(probabilities)[::-1][: self._top_k]
        return [ClassificationResult(label=self._labels[i], confidence=float(probabilities[i])) for i in top]
