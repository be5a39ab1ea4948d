"""Audible completion cue for scheduled-task deliveries."""

from __future__ import annotations

import sys
from typing import TextIO


class CompletionCue:
    """Rings the terminal bell."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout

    def play(self) -> None:
        self._stream.write("\a")
        self._stream.flush()
