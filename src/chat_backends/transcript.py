"""Append-only diagnostic transcript of prompts and streamed responses."""

from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)

SEPARATOR = "================="


class Transcript:
    """Best-effort text log appended to ``path``.

    Every write opens the file in append mode. Failures are logged and
    ignored so they never interrupt generation. A ``None`` path disables
    the transcript.
    """

    def __init__(self, path: Optional[str]) -> None:
        self.path = path

    def _append(self, text: str) -> None:
        if self.path is None:
            return
        try:
            with open(self.path, "a", encoding="utf-8", errors="backslashreplace") as fh:
                fh.write(text)
        except (OSError, ValueError):
            logger.error("Failed to write to %s", self.path, exc_info=True)

    def begin(self, prompt: str) -> None:
        self._append(f"\n\n{SEPARATOR}\nPROMPT:\n{prompt}\n\nRESPONSE:\n")

    def write(self, text: str) -> None:
        self._append(text)

    def end(self) -> None:
        self._append("\n")
