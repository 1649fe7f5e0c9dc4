from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass


@dataclass(frozen=True)
class Location:
    """A position suitable for problem messages; ``file`` is relative to the revision root."""

    file: str
    line: int
    column: int


class LineIndex:
    """Maps string offsets to 1-based lines and back.

    Only newline positions are recorded, so no Unicode handling is needed.
    """

    def __init__(self, text: str) -> None:
        self._newlines = [index for index, char in enumerate(text) if char == "\n"]

    def line(self, offset: int) -> int:
        """Line number for ``offset``; a newline belongs to the line it ends."""
        return bisect_left(self._newlines, offset) + 1

    def offset(self, line: int, column: int) -> int:
        if line == 1:
            return column - 1
        return self._newlines[line - 2] + column

    def column(self, offset: int) -> int:
        line = self.line(offset)
        if line == 1:
            return offset + 1
        return offset - self._newlines[line - 2]
