"""Switching between live capture and still-image selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from scenelens.errors import SourceUnavailable
from scenelens.pipeline.state import Mode

if TYPE_CHECKING:
    from scenelens.capture.sources import FrameSource, StillImageSource
    from scenelens.pipeline.coordinator import RequestCoordinator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Controls:
    """Enabled state of the two mode controls."""

    live: bool
    still: bool


class ModeController:
    """Keeps the frame source running exactly while the pipeline is in LIVE mode."""

    def __init__(self, coordinator: RequestCoordinator, frame_source: FrameSource | None) -> None:
        self._coordinator = coordinator
        self._frame_source = frame_source
        self._live_available = frame_source is not None and frame_source.is_available()
        if not self._live_available:
            logger.warning("Live capture unavailable, running in still-image mode only")
        self._controls = Controls(live=self._live_available, still=True)

    @property
    def live_available(self) -> bool:
        return self._live_available

    @property
    def controls(self) -> Controls:
        return self._controls

    @property
    def mode(self) -> Mode | None:
        return self._coordinator.mode

    def activate_live(self) -> None:
        """Start the frame source and switch to LIVE.

        Raises:
            SourceUnavailable: If there is no capture device.
        """
        if not self._live_available or self._frame_source is None:
            raise SourceUnavailable()

        with self._coordinator.transition(Mode.LIVE) as previous:
            if previous is not Mode.LIVE:
                self._frame_source.start()
            self._controls = Controls(live=False, still=True)

    def activate_still_picker(self, source: StillImageSource) -> None:
        """Stop live capture, switch to STILL and run the still-image selection.

        Raises:
            Busy: If a still image is already being classified.
            InvalidImage: If the picked image cannot be decoded.
        """
        with self._coordinator.transition(Mode.STILL):
            if self._frame_source is not None and self._frame_source.is_running:
                self._frame_source.stop()
            self._controls = Controls(live=self._live_available, still=True)

        source.pick(
            on_picked=self._coordinator.submit_still_image,
            on_cancelled=lambda: logger.info("Still image selection cancelled"),
        )

    def shutdown(self) -> None:
        with self._coordinator.transition(Mode.STILL):
            if self._frame_source is not None and self._frame_source.is_running:
                self._frame_source.stop()
            self._controls = Controls(live=False, still=False)
        self._coordinator.shutdown()
