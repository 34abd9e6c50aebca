"""Read-through cache of decoded file lines, invalidated by mtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from owaspscanner.config import ScannerConfig
from owaspscanner.scanner.reader import MultiEncodingReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _CacheEntry:
    lines: tuple[str, ...]
    mtime_ns: int


class FileContentCache:
    """Thread-safe mapping of file path to decoded lines.

    An entry stays valid while the file's modification time is not after the
    mtime recorded when the entry was loaded. Entries are immutable and are
    replaced by a single dict assignment, so concurrent readers see either the
    old entry or the new one. Two threads may both reload a stale path; the
    read is idempotent and the last assignment wins.
    """

    def __init__(
        self,
        reader: MultiEncodingReader | None = None,
        enabled: bool = True,
    ) -> None:
        self.reader = reader or MultiEncodingReader()
        self.enabled = enabled
        self._entries: dict[str, _CacheEntry] = {}

    @classmethod
    def from_config(cls, config: ScannerConfig) -> FileContentCache:
        return cls(
            MultiEncodingReader(max_line_length=config.max_line_length),
            enabled=config.cache_file_content,
        )

    def get_lines(self, path: str | Path) -> tuple[str, ...]:
        """Return the file's lines, from cache when the file is unchanged.

        The returned tuple may be shared with other callers.
        """
        if not self.enabled:
            return self.reader.read(path)

        key = _cache_key(path)
        entry = self._entries.get(key)

        try:
            mtime_ns = os.stat(path).st_mtime_ns
        except OSError:
            if entry is not None:
                return entry.lines
            # Let the reader report the failure.
            return self.reader.read(path)

        if entry is not None and mtime_ns <= entry.mtime_ns:
            return entry.lines

        if entry is not None:
            logger.debug("Reloading modified file %s", path)

        # stat before read: a write racing the read leaves an older mtime in
        # the entry, so the next lookup reloads.
        lines = self.reader.read(path)
        self._entries[key] = _CacheEntry(lines=lines, mtime_ns=mtime_ns)
        return lines

    def evict(self, path: str | Path) -> None:
        """Drop one path so its next read comes from disk."""
        self._entries.pop(_cache_key(path), None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        return _cache_key(path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _cache_key(path: str | Path) -> str:
    return os.path.abspath(path)
