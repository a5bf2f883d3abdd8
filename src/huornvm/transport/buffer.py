"""Bounded text history for duplex transports."""

from __future__ import annotations

import threading
import unicodedata

DEFAULT_MAX_SIZE = 100_000
DEFAULT_TRIM_SLACK = 10_000


def _boundary(text: str, index: int) -> int:
    # Never leave a combining mark at the new front.
    while index < len(text) and unicodedata.combining(text[index]):
        index += 1
    return index


class OutputBuffer:
    """Capped text accumulator that trims from the front on overflow.

    When an append would push the length past ``max_size``, the overflow
    plus ``trim_slack`` characters are dropped from the front so trimming
    happens once per ``trim_slack`` characters rather than on every append.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE, trim_slack: int = DEFAULT_TRIM_SLACK) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be positive: {max_size}")
        if trim_slack < 0:
            raise ValueError(f"trim_slack cannot be negative: {trim_slack}")
        self.max_size = max_size
        self.trim_slack = trim_slack
        self._text = ""
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._text)

    def append(self, text: str) -> int:
        """Append ``text`` and return how many characters were trimmed."""
        if not text:
            return 0
        with self._lock:
            combined = self._text + text
            overflow = len(combined) - self.max_size
            if overflow <= 0:
                self._text = combined
                return 0
            drop = min(max(overflow + self.trim_slack, 0), len(combined))
            drop = _boundary(combined, drop)
            self._text = combined[drop:]
            return drop

    def snapshot(self) -> str:
        with self._lock:
            return self._text

    def clear(self) -> None:
        with self._lock:
            self._text = ""
