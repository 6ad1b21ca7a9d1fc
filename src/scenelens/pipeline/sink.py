"""Result formatting and hand-off to the UI callback."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from scenelens.errors import PipelineError

if TYPE_CHECKING:
    from collections.abc import Callable

    from scenelens.ml.image_classifier import ClassificationResult
    from scenelens.pipeline.dispatch import Dispatcher
    from scenelens.pipeline.state import Mode

logger = logging.getLogger(__name__)

VOWELS = frozenset("aeiou")


def article_for(label: str) -> str:
    """Return "an" if ``label`` starts with a vowel (a, e, i, o, u), else "a"."""
    return "an" if label[:1].lower() in VOWELS else "a"


def confidence_percent(confidence: float) -> int:
    """Confidence as a truncated integer percentage.

    Float noise is rounded off first so that 0.29 renders as 29, not 28.
    """
    return int(round(confidence * 100, 6))


def format_result(result: ClassificationResult) -> str:
    return f"{confidence_percent(result.confidence)}% it's {article_for(result.label)} {result.label}"


def format_failure(error: PipelineError) -> str:
    return f"couldn't identify the scene ({error.reason})"


class ResultSink:
    """Publishes display text for each completed request on one dispatcher.

    ``on_pending``, when given, is posted on the same dispatcher as soon as
    a still image is admitted, so it always runs before that image's result.
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        on_result: Callable[[str, Mode], None],
        on_pending: Callable[[Mode], None] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._on_result = on_result
        self._on_pending = on_pending

    def announce_pending(self, mode: Mode) -> None:
        if self._on_pending is None:
            return
        on_pending = self._on_pending
        self._dispatcher.post(lambda: on_pending(mode))

    def publish(self, outcome: ClassificationResult | PipelineError, mode: Mode) -> None:
        if isinstance(outcome, PipelineError):
            text = format_failure(outcome)
        else:
            text = format_result(outcome)
        logger.debug("Publishing %s result: %s", mode, text)
        self._dispatcher.post(lambda: self._on_result(text, mode))
