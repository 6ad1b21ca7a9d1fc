"""Display state shown to API clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from scenelens.pipeline.state import Mode

INITIAL_TEXT = "This application will translate a photo or frame to text"
DETECTING_TEXT = "detecting scene..."


@dataclass
class ResultBoard:
    """Latest display text. Only touched from the event loop."""

    text: str = INITIAL_TEXT
    mode: Mode | None = None
    sequence: int = 0

    def update(self, text: str, mode: Mode | None) -> None:
        self.text = text
        self.mode = mode
        self.sequence += 1

    def mark_detecting(self, mode: Mode) -> None:
        self.update(DETECTING_TEXT, mode)
