"""Inference concurrency layer.

Architecture:
    capture thread / API -> InferenceEngine.classify() -> ThreadPoolExecutor(N) -> ONNX inference

``classify`` never blocks the caller: it returns a Future that completes
on one of the inference worker threads. Admission control (how many
requests may be outstanding) is the coordinator's job, not the engine's.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scenelens.config import Settings
    from scenelens.ml.image_classifier import ClassificationResult, ClassifyOptions, ImageClassifier
    from scenelens.pipeline.state import RawImage

logger = logging.getLogger(__name__)


class InferenceEngine:
    """Runs an ImageClassifier on a bounded thread pool."""

    def __init__(self, classifier: ImageClassifier, settings: Settings) -> None:
        self._classifier = classifier
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="onnx-inference",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return self._classifier.model_name

    def classify(self, image: RawImage, options: ClassifyOptions) -> Future[list[ClassificationResult]]:
        """Schedule one classification and return its Future.

        Raises:
            RuntimeError: If the engine has been shut down.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            future = self._executor.submit(self._run, image, options)
        except RuntimeError:
            with self._counter_lock:
                self._queue_depth -= 1
            raise
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: Future[list[ClassificationResult]]) -> None:
        # Cancelled requests never reach _run, so they leave the queue here.
        if future.cancelled():
            with self._counter_lock:
                self._queue_depth -= 1

    def _run(self, image: RawImage, options: ClassifyOptions) -> list[ClassificationResult]:
        with self._counter_lock:
            self._queue_depth -= 1
            self._active_count += 1
        try:
            return self._classifier.classify(image, options)
        finally:
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a worker thread."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Stop accepting work and drop queued requests without waiting."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Inference engine shut down")
