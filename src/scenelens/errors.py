"""Error taxonomy for the capture-to-inference pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors.

    ``reason`` is a short human-readable message suitable for display.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class EngineFailure(PipelineError):
    """The inference call itself failed."""


class MalformedResult(EngineFailure):
    """The engine returned an empty or inconsistent result list."""


class InferenceTimeout(EngineFailure):
    """The engine did not complete within the configured timeout."""


class Busy(PipelineError):
    """A still image was submitted while another one is still being classified."""

    def __init__(self, reason: str = "a still image is already being classified") -> None:
        super().__init__(reason)


class SourceUnavailable(PipelineError):
    """No capture device is available, live mode is disabled."""

    def __init__(self, reason: str = "no capture device available") -> None:
        super().__init__(reason)


class ModelLoadError(RuntimeError):
    """The classification model could not be constructed. Fatal at startup."""


class InvalidImage(ValueError):
    """An image payload could not be decoded or exceeds the configured limits."""
