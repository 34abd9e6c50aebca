"""Per-file view of decoded lines for contextual rule checks."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class RuleContext:
    """Line windows around a target line, memoized for one file's scan.

    Built from ``(path, lines)`` alone. Window queries are cached by
    ``(line_number, window[, delimiter])``; the lines never change for the
    life of the context, so a key always maps to the same result.
    """

    def __init__(self, path: str | Path, lines: Sequence[str]) -> None:
        self.path = Path(path)
        self.lines = lines
        self._windows: dict[tuple[int, int], Sequence[str]] = {}
        self._joined: dict[tuple[int, int, str], str] = {}
        self._content: str | None = None

    @property
    def file_name(self) -> str:
        return self.path.name

    @property
    def content(self) -> str:
        """The whole file joined with newlines."""
        if self._content is None:
            self._content = "\n".join(self.lines)
        return self._content

    def lines_around(self, line_number: int, window: int) -> Sequence[str]:
        """Lines ``[n - window - 1, n + window)`` (0-based), clamped to the file.

        ``line_number`` is 1-based.
        """
        key = (line_number, window)
        cached = self._windows.get(key)
        if cached is None:
            start = max(0, line_number - window - 1)
            end = min(len(self.lines), line_number + window)
            cached = self.lines[start:end]
            self._windows[key] = cached
        return cached

    def joined_lines_around(
        self,
        line_number: int,
        window: int,
        delimiter: str = "\n",
    ) -> str:
        key = (line_number, window, delimiter)
        cached = self._joined.get(key)
        if cached is None:
            cached = delimiter.join(self.lines_around(line_number, window))
            self._joined[key] = cached
        return cached
