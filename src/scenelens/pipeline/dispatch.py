"""Designated execution contexts for UI callbacks.

Every result publication is posted to exactly one dispatcher, so the
presentation layer only ever sees calls from a single context no matter
which capture or inference thread produced the result.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    """A single-consumer context that runs posted callables in order."""

    def post(self, func: Callable[[], None]) -> None:
        """Schedule ``func`` to run on the dispatcher's context. Never blocks."""
        ...


def _guarded(func: Callable[[], None]) -> Callable[[], None]:
    def run() -> None:
        try:
            func()
        except Exception:
            logger.exception("UI callback raised")

    return run


class LoopDispatcher:
    """Posts callables onto an asyncio event loop from any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def post(self, func: Callable[[], None]) -> None:
        if self._loop.is_closed():
            logger.warning("Event loop closed, dropping UI update")
            return
        self._loop.call_soon_threadsafe(_guarded(func))


class SerialDispatcher:
    """Runs posted callables one at a time on a dedicated thread."""

    def __init__(self, name: str = "ui") -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)

    def post(self, func: Callable[[], None]) -> None:
        try:
            self._executor.submit(_guarded(func))
        except RuntimeError:
            logger.warning("Dispatcher shut down, dropping UI update")

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
