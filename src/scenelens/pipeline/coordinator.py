"""Admission control between the capture sources and the inference engine.

At most one request per mode is outstanding at any time. Live frames that
arrive while the live slot is occupied are dropped, never queued, so the
pipeline always works on a fresh frame and cannot build up a backlog.
"""

from __future__ import annotations

import logging
import math
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import TYPE_CHECKING, Protocol

from scenelens.errors import Busy, EngineFailure, InferenceTimeout, MalformedResult, PipelineError
from scenelens.ml.image_classifier import ClassificationResult, ClassifyOptions
from scenelens.pipeline.state import ClassificationRequest, InFlight, Mode, PipelineSnapshot, PipelineState

if TYPE_CHECKING:
    from collections.abc import Iterator
    from concurrent.futures import Future

    from scenelens.pipeline.sink import ResultSink
    from scenelens.pipeline.state import RawImage

logger = logging.getLogger(__name__)

# How often a waiting frame re-checks whether a mode switch holds the lock.
SWITCH_POLL_SECONDS = 0.01


class Engine(Protocol):
    def classify(self, image: RawImage, options: ClassifyOptions) -> Future[list[ClassificationResult]]: ...


def top_result(results: object) -> ClassificationResult:
    """Pick the highest-confidence entry of an engine output.

    Raises:
        MalformedResult: If the output is empty or any entry is inconsistent.
    """
    if not isinstance(results, list) or not results:
        raise MalformedResult("the model returned no classifications")
    for entry in results:
        if not isinstance(entry, ClassificationResult):
            raise MalformedResult(f"unexpected result type {type(entry).__name__}")
        if not entry.label:
            raise MalformedResult("the model returned an empty label")
        if not math.isfinite(entry.confidence) or not 0.0 <= entry.confidence <= 1.0:
            raise MalformedResult(f"confidence {entry.confidence!r} is outside [0, 1]")
    return max(results, key=lambda entry: entry.confidence)


class RequestCoordinator:
    """Owns the pipeline state and turns admitted images into engine requests."""

    def __init__(
        self,
        engine: Engine,
        sink: ResultSink,
        inference_timeout: float | None = None,
    ) -> None:
        self._engine = engine
        self._sink = sink
        self._timeout = inference_timeout
        self._state = PipelineState()
        self._lock = threading.Lock()
        # Set while a transition holds the lock; frames arriving then are dropped.
        self._switching = threading.Event()
        # Frames dropped because the state lock was contended; guarded by its own lock.
        self._contended_drops = 0
        self._drop_lock = threading.Lock()

    # -- Submission ---------------------------------------------------------

    def submit_frame(self, image: RawImage) -> None:
        """Admit a live frame, or drop it if the live slot is busy.

        Other lock holders only keep the lock for a few statements, so the
        frame waits for them. A mode switch may hold it while it stops this
        very capture thread; a frame arriving then is dropped instead.
        """
        while not self._lock.acquire(timeout=SWITCH_POLL_SECONDS):
            if self._switching.is_set():
                self._record_drop("mode switch in progress")
                return
        try:
            if self._state.mode is not Mode.LIVE or self._state.is_in_flight(Mode.LIVE):
                self._state.counters.dropped += 1
                slot = None
            else:
                slot = self._admit(image, Mode.LIVE)
        finally:
            self._lock.release()

        if slot is None:
            logger.debug("Dropped live frame")
            return
        self._dispatch(slot)

    def submit_still_image(self, image: RawImage) -> ClassificationRequest:
        """Admit a still image.

        Raises:
            Busy: If a still image is already in flight. State is untouched.
        """
        with self._lock:
            if self._state.is_in_flight(Mode.STILL):
                raise Busy()
            slot = self._admit(image, Mode.STILL)
        self._sink.announce_pending(Mode.STILL)
        self._dispatch(slot)
        return slot.request

    # -- Mode ---------------------------------------------------------------

    @contextmanager
    def transition(self, mode: Mode) -> Iterator[Mode | None]:
        """Switch mode while holding the state lock, yielding the previous mode.

        The body (typically starting or stopping the frame source) runs
        under the same lock as admission, so no frame can be admitted
        halfway through a switch. The mode only changes if the body
        succeeds.
        """
        with self._lock:
            self._switching.set()
            try:
                yield self._state.mode
                if self._state.mode is not mode:
                    logger.info("Mode %s -> %s", self._state.mode, mode)
                self._state.mode = mode
            finally:
                self._switching.clear()

    @property
    def mode(self) -> Mode | None:
        with self._lock:
            return self._state.mode

    def snapshot(self) -> PipelineSnapshot:
        with self._lock:
            snapshot = self._state.snapshot()
        with self._drop_lock:
            return replace(snapshot, dropped=snapshot.dropped + self._contended_drops)

    def shutdown(self) -> None:
        """Forget outstanding requests and cancel them best-effort."""
        with self._lock:
            pending = [slot for slot in self._state.slots.values() if slot is not None]
            for mode in self._state.slots:
                self._state.slots[mode] = None
            self._state.mode = None
        for slot in pending:
            if slot.future is not None:
                slot.future.cancel()
        if pending:
            logger.info("Discarded %d in-flight request(s)", len(pending))

    # -- Internal -----------------------------------------------------------

    def _admit(self, image: RawImage, mode: Mode) -> InFlight:
        slot = InFlight(request=ClassificationRequest(image=image, mode=mode))
        self._state.slots[mode] = slot
        self._state.counters.admitted += 1
        return slot

    def _record_drop(self, why: str) -> None:
        with self._drop_lock:
            self._contended_drops += 1
        logger.debug("Dropped live frame: %s", why)

    def _dispatch(self, slot: InFlight) -> None:
        request = slot.request
        options = ClassifyOptions(camera_intrinsics=request.image.camera_intrinsics)
        try:
            future = self._engine.classify(request.image, options)
        except Exception as exc:
            logger.warning("Dispatch of request %d failed", request.request_id, exc_info=True)
            self._finish(request, EngineFailure(str(exc) or type(exc).__name__))
            return

        # Set without the lock so the capture thread never waits here; shutdown
        # cancels on a best-effort basis.
        slot.future = future

        if self._timeout is not None:
            timer = threading.Timer(self._timeout, self._expire, args=(request,))
            timer.daemon = True
            timer.start()
            future.add_done_callback(lambda _: timer.cancel())

        future.add_done_callback(lambda done: self._on_complete(request, done))

    def _on_complete(self, request: ClassificationRequest, future: Future[list[ClassificationResult]]) -> None:
        if future.cancelled():
            outcome: ClassificationResult | PipelineError = EngineFailure("request cancelled")
        elif (exc := future.exception()) is not None:
            logger.warning(
                "Inference failed for %s request %d", request.mode, request.request_id, exc_info=exc
            )
            outcome = exc if isinstance(exc, PipelineError) else EngineFailure(str(exc) or type(exc).__name__)
        else:
            try:
                outcome = top_result(future.result())
            except MalformedResult as malformed:
                logger.warning("Malformed result for request %d: %s", request.request_id, malformed.reason)
                outcome = malformed
        self._finish(request, outcome)

    def _expire(self, request: ClassificationRequest) -> None:
        logger.warning("Request %d timed out after %ss", request.request_id, self._timeout)
        self._finish(request, InferenceTimeout(f"no result after {self._timeout}s"))

    def _finish(self, request: ClassificationRequest, outcome: ClassificationResult | PipelineError) -> None:
        with self._lock:
            slot = self._state.slots[request.mode]
            if slot is None or slot.request is not request:
                stale = True
            else:
                stale = False
                self._state.slots[request.mode] = None
                if isinstance(outcome, PipelineError):
                    self._state.counters.failed += 1
                else:
                    self._state.counters.completed += 1

        if stale:
            logger.info("Discarding late completion of request %d", request.request_id)
            return
        self._sink.publish(outcome, request.mode)
