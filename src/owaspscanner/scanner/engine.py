"""Scan engine — walks a tree and dispatches files to registered scanners."""

from __future__ import annotations

import logging
import os
import stat
import threading
import time
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from owaspscanner.config import ScannerConfig
from owaspscanner.scanner.cache import FileContentCache
from owaspscanner.scanner.file_scanner import FileScanner
from owaspscanner.scanner.models import ScanResult, SecurityViolation

logger = logging.getLogger(__name__)

# Directories to always skip
_SKIP_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".vs",
    ".idea",
    ".vscode",
    "node_modules",
    "packages",
    "bin",
    "obj",
    "__pycache__",
    ".venv",
    "venv",
    "dist",
    "build",
    ".tox",
}


class ScanEngine:
    """Orchestrates security scanning across a directory.

    Scanners are registered before the first scan. Each file is one unit of
    work: with parallel processing on, files are scanned on a bounded thread
    pool and results are merged on the calling thread.
    """

    def __init__(
        self,
        config: ScannerConfig | None = None,
        scanners: Iterable[FileScanner] = (),
        exclude_patterns: list[str] | None = None,
    ) -> None:
        self._config = config or ScannerConfig()
        self._cache = FileContentCache.from_config(self._config)
        self._scanners: list[FileScanner] = []
        self._exclude = set(exclude_patterns or [])
        self._stop_event = threading.Event()
        for scanner in scanners:
            self.register_scanner(scanner)

    @property
    def config(self) -> ScannerConfig:
        return self._config

    @config.setter
    def config(self, config: ScannerConfig) -> None:
        """Replace the config; the content cache is rebuilt to match it."""
        self._config = config
        self._cache = FileContentCache.from_config(config)
        for scanner in self._scanners:
            scanner.attach(config, self._cache)

    @property
    def cache(self) -> FileContentCache:
        return self._cache

    @property
    def scanners(self) -> tuple[FileScanner, ...]:
        return tuple(self._scanners)

    def register_scanner(self, scanner: FileScanner) -> None:
        scanner.attach(self._config, self._cache)
        self._scanners.append(scanner)
        logger.debug("Registered scanner %s for %s", scanner.name, scanner.extensions)

    def stop(self) -> None:
        """Ask a running scan to stop; files already being scanned finish."""
        self._stop_event.set()

    def scan_directory(self, directory: str | Path) -> list[SecurityViolation]:
        """Scan a directory and return every violation, in no particular order."""
        return self.scan(directory).violations

    def scan(self, directory: str | Path) -> ScanResult:
        """Scan a directory and return aggregated results."""
        root = _resolve_root(directory)
        self._stop_event.clear()
        start = time.time()

        result = ScanResult(directory=str(root))
        files = list(self._walk(root, result))
        logger.info(
            "Scanning %d files under %s (%s)",
            len(files),
            root,
            f"{self._config.max_threads} threads"
            if self._config.parallel_processing
            else "sequential",
        )

        if self._config.parallel_processing and len(files) > 1:
            outcomes = self._scan_parallel(files)
        else:
            outcomes = (self._scan_one(path) for path in files)

        for outcome in outcomes:
            if outcome is None:
                continue
            violations, failed = outcome
            if failed:
                result.files_failed += 1
            else:
                result.files_scanned += 1
            result.violations.extend(violations)

        result.stopped = self._stop_event.is_set()
        result.duration = time.time() - start
        logger.info(
            "Scan of %s finished: %d violations in %d files (%.2fs)%s",
            root,
            len(result.violations),
            result.files_scanned,
            result.duration,
            " [stopped]" if result.stopped else "",
        )
        return result

    def scan_file(self, path: str | Path) -> list[SecurityViolation]:
        """Scan one file with every scanner that accepts its extension."""
        violations, _ = self._dispatch(Path(path))
        return violations

    def _scan_parallel(
        self, files: list[Path]
    ) -> Iterator[tuple[list[SecurityViolation], bool] | None]:
        with ThreadPoolExecutor(
            max_workers=self._config.max_threads,
            thread_name_prefix="owaspscanner",
        ) as executor:
            futures = [executor.submit(self._scan_one, path) for path in files]
            for future in as_completed(futures):
                yield future.result()

    def _scan_one(self, path: Path) -> tuple[list[SecurityViolation], bool] | None:
        if self._stop_event.is_set():
            return None
        return self._dispatch(path)

    def _dispatch(self, path: Path) -> tuple[list[SecurityViolation], bool]:
        """Run matching scanners on ``path``; errors are logged, never raised.

        The per-file cap applies to the merged result of every scanner.
        """
        violations: list[SecurityViolation] = []
        failed = False
        for scanner in self._scanners:
            if not scanner.can_process(path):
                continue
            try:
                violations.extend(scanner.scan_file(path))
            except Exception as e:
                failed = True
                logger.warning("Error scanning %s with %s: %s", path, scanner.name, e)
                logger.debug("Scan failure details for %s", path, exc_info=True)
        return violations[: self._config.max_violations_per_file], failed

    def _walk(self, directory: Path, result: ScanResult) -> Iterator[Path]:
        """Walk directory yielding regular files some scanner accepts."""

        def on_error(error: OSError) -> None:
            logger.warning("Skipping unreadable directory %s: %s", error.filename, error)

        for root, dirs, files in os.walk(directory, onerror=on_error):
            # Prune skipped directories in-place
            dirs[:] = [
                d
                for d in dirs
                if d not in _SKIP_DIRS and d not in self._exclude
            ]

            for name in files:
                if name in self._exclude:
                    continue
                path = Path(root) / name
                if not any(s.can_process(path) for s in self._scanners):
                    continue
                try:
                    st = path.stat()
                except OSError as e:
                    logger.debug("Skipping %s: %s", path, e)
                    result.files_skipped += 1
                    continue
                if not stat.S_ISREG(st.st_mode):
                    continue
                if st.st_size > self._config.max_file_size_bytes:
                    logger.debug(
                        "Skipping %s: %d bytes exceeds limit of %d",
                        path,
                        st.st_size,
                        self._config.max_file_size_bytes,
                    )
                    result.files_skipped += 1
                    continue
                yield path


def _resolve_root(directory: str | Path) -> Path:
    root = Path(os.path.normpath(Path(directory).expanduser())).resolve()
    if not root.exists():
        raise FileNotFoundError(f"Directory does not exist: {root}")
    if not root.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {root}")
    return root

