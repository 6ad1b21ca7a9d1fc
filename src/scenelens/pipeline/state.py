"""Shared types for the capture-to-inference pipeline."""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from concurrent.futures import Future

    from numpy.typing import NDArray

    from scenelens.ml.image_classifier import ClassificationResult


class Mode(StrEnum):
    LIVE = "live"
    STILL = "still"


class Orientation(IntEnum):
    """Pixel orientation, numbered as in EXIF / kCGImagePropertyOrientation."""

    UP = 1
    UP_MIRRORED = 2
    DOWN = 3
    DOWN_MIRRORED = 4
    LEFT_MIRRORED = 5
    RIGHT = 6
    RIGHT_MIRRORED = 7
    LEFT = 8

    @classmethod
    def from_name(cls, name: str) -> Orientation:
        return cls[name.upper()]


@dataclass(frozen=True, eq=False)
class RawImage:
    """Immutable handle to RGB pixel data plus orientation metadata.

    The pixel buffer is flagged read-only on construction so it can be
    shared between the producing source and exactly one request.
    """

    pixels: NDArray[np.uint8]
    orientation: Orientation = Orientation.UP
    camera_intrinsics: NDArray[np.float32] | None = None

    def __post_init__(self) -> None:
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 3:
            raise ValueError(f"Expected HxWx3 pixels, got shape {self.pixels.shape}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {self.pixels.dtype}")
        self.pixels.flags.writeable = False

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


_request_ids = itertools.count(1)


@dataclass(frozen=True, eq=False)
class ClassificationRequest:
    """One unit of work sent to the inference engine."""

    image: RawImage
    mode: Mode
    request_id: int = field(default_factory=lambda: next(_request_ids))
    issued_at: float = field(default_factory=time.monotonic)


@dataclass
class InFlight:
    """Occupant of a per-mode slot: the request and its pending future."""

    request: ClassificationRequest
    future: Future[list[ClassificationResult]] | None = None


@dataclass
class PipelineCounters:
    admitted: int = 0
    dropped: int = 0
    completed: int = 0
    failed: int = 0


@dataclass(frozen=True)
class PipelineSnapshot:
    """A consistent, read-only copy of the pipeline state."""

    mode: Mode | None
    in_flight: frozenset[Mode]
    admitted: int
    dropped: int
    completed: int
    failed: int


@dataclass
class PipelineState:
    """Mode plus one capacity-1 slot per mode.

    A mode has a request in flight exactly when its slot is occupied.
    Only the coordinator mutates this, and only under its lock.
    """

    mode: Mode | None = None
    slots: dict[Mode, InFlight | None] = field(default_factory=lambda: {Mode.LIVE: None, Mode.STILL: None})
    counters: PipelineCounters = field(default_factory=PipelineCounters)

    def is_in_flight(self, mode: Mode) -> bool:
        return self.slots[mode] is not None

    def snapshot(self) -> PipelineSnapshot:
        return PipelineSnapshot(
            mode=self.mode,
            in_flight=frozenset(m for m, slot in self.slots.items() if slot is not None),
            admitted=self.counters.admitted,
            dropped=self.counters.dropped,
            completed=self.counters.completed,
            failed=self.counters.failed,
        )
