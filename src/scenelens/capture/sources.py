"""Image sources feeding the pipeline: a live camera and one-shot still images."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol

import cv2

from scenelens.errors import SourceUnavailable
from scenelens.ml.preprocessing import decode_image
from scenelens.pipeline.state import Orientation, RawImage

if TYPE_CHECKING:
    from collections.abc import Callable

    from scenelens.config import Settings

logger = logging.getLogger(__name__)

READ_RETRY_SECONDS = 0.1
JOIN_TIMEOUT_SECONDS = 2.0


class FrameSource(Protocol):
    """Pushes frames into a callback while running."""

    @property
    def is_running(self) -> bool: ...

    def is_available(self) -> bool:
        """Return whether a capture device exists at all."""
        ...

    def start(self) -> None:
        """Begin delivering frames.

        Raises:
            SourceUnavailable: If the device cannot be opened.
        """
        ...

    def stop(self) -> None:
        """Stop delivering frames. No frame is delivered after this returns."""
        ...


class StillImageSource(Protocol):
    def pick(self, on_picked: Callable[[RawImage], object], on_cancelled: Callable[[], None]) -> None:
        """Yield at most one image, or signal that the selection was cancelled."""
        ...


class Cv2FrameSource:
    """OpenCV camera read on a dedicated capture thread."""

    def __init__(
        self,
        on_frame: Callable[[RawImage], None],
        camera_index: int = 0,
        width: int = 352,
        height: int = 288,
        orientation: Orientation = Orientation.UP,
    ) -> None:
        self._on_frame = on_frame
        self._index = camera_index
        self._width = width
        self._height = height
        self._orientation = orientation
        self._cap: cv2.VideoCapture | None = None
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._available: bool | None = None

    @classmethod
    def from_settings(cls, settings: Settings, on_frame: Callable[[RawImage], None]) -> Cv2FrameSource:
        return cls(
            on_frame,
            camera_index=settings.camera_index,
            width=settings.frame_width,
            height=settings.frame_height,
            orientation=Orientation.from_name(settings.frame_orientation),
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def is_available(self) -> bool:
        if self._available is None:
            probe = cv2.VideoCapture(self._index)
            self._available = probe.isOpened()
            probe.release()
            if not self._available:
                logger.warning("No capture device at index %d", self._index)
        return self._available

    def start(self) -> None:
        if self.is_running:
            return

        cap = cv2.VideoCapture(self._index)
        if not cap.isOpened():
            cap.release()
            raise SourceUnavailable(f"failed to open capture device {self._index}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        # Keep only the newest frame in the driver queue; late frames are discarded.
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        self._cap = cap
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, args=(cap,), daemon=True, name="frame-capture")
        self._thread.start()
        logger.info("Capture started on device %d", self._index)

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=JOIN_TIMEOUT_SECONDS)
            if thread.is_alive():
                logger.warning("Capture thread did not exit within %ss", JOIN_TIMEOUT_SECONDS)
        self._thread = None
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        logger.info("Capture stopped")

    def _run(self, cap: cv2.VideoCapture) -> None:
        while not self._stop_event.is_set():
            ok, frame = cap.read()
            if not ok or frame is None:
                logger.debug("Frame read failed, retrying")
                self._stop_event.wait(READ_RETRY_SECONDS)
                continue
            if self._stop_event.is_set():
                break

            image = RawImage(pixels=cv2.cvtColor(frame, cv2.COLOR_BGR2RGB), orientation=self._orientation)
            try:
                self._on_frame(image)
            except Exception:
                logger.exception("Frame callback raised")


class BytesStillImageSource:
    """A still image supplied as an encoded payload, e.g. an upload."""

    def __init__(self, payload: bytes, max_pixels: int, orientation: Orientation = Orientation.UP) -> None:
        self._payload = payload
        self._max_pixels = max_pixels
        self._orientation = orientation

    def pick(self, on_picked: Callable[[RawImage], object], on_cancelled: Callable[[], None]) -> None:
        """Decode the payload and hand it over; an empty payload counts as cancelled.

        Raises:
            InvalidImage: If the payload is not a decodable image.
        """
        if not self._payload:
            on_cancelled()
            return
        pixels = decode_image(self._payload, self._max_pixels)
        on_picked(RawImage(pixels=pixels, orientation=self._orientation))
