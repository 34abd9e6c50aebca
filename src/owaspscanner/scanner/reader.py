"""Multi-encoding file reader with per-line length limiting."""

from __future__ import annotations

import codecs
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "... [truncated]"

# Tried in order after UTF-8. latin-1 accepts any byte sequence, so the
# UTF-16 variants only matter if the list is reordered.
FALLBACK_ENCODINGS = ("cp1252", "latin-1", "utf-16-le", "utf-16-be")

_UTF16_BOMS = (
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)


class ReadError(OSError):
    """A file's bytes could not be obtained at all."""


class MultiEncodingReader:
    """Decode files as UTF-8, then legacy encodings, then lossy UTF-8.

    Decoding never fails once the bytes are read; ``ReadError`` is raised only
    when the file itself cannot be read.
    """

    def __init__(
        self,
        max_line_length: int = 5000,
        encodings: tuple[str, ...] = FALLBACK_ENCODINGS,
    ) -> None:
        self.max_line_length = max_line_length
        self.encodings = encodings

    def read(self, path: str | Path) -> tuple[str, ...]:
        """Return the file's lines, each capped at ``max_line_length``."""
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise ReadError(f"Unable to read {path}: {e}") from e

        text = self.decode(data, name=str(path))
        return tuple(self._limit(line) for line in split_lines(text))

    def decode(self, data: bytes, name: str = "<bytes>") -> str:
        for bom, encoding in _UTF16_BOMS:
            if data.startswith(bom):
                try:
                    return data[len(bom) :].decode(encoding)
                except UnicodeDecodeError:
                    break

        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError:
            pass

        for encoding in self.encodings:
            try:
                text = data.decode(encoding)
            except UnicodeDecodeError:
                continue
            logger.debug("Decoded %s as %s", name, encoding)
            return text

        logger.debug("Decoding %s with replacement characters", name)
        return data.decode("utf-8", errors="replace")

    def _limit(self, line: str) -> str:
        if len(line) > self.max_line_length:
            return line[: self.max_line_length] + TRUNCATION_MARKER
        return line


def split_lines(text: str) -> list[str]:
    """Split on ``\\r\\n``, ``\\r`` or ``\\n``; a trailing terminator adds no empty line."""
    if not text:
        return []
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines
