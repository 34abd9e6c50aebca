"""File scanner — binds a rule set to file extensions and scans single files."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from owaspscanner.config import ScannerConfig
from owaspscanner.scanner.cache import FileContentCache
from owaspscanner.scanner.context import RuleContext
from owaspscanner.scanner.models import SecurityViolation
from owaspscanner.scanner.reader import ReadError
from owaspscanner.scanner.rules import SecurityRule, compile_prefilter

logger = logging.getLogger(__name__)


class FileScanner:
    """Runs one ecosystem's rules over files with matching extensions."""

    def __init__(
        self,
        name: str,
        technology: str,
        extensions: Iterable[str],
        rules: Iterable[SecurityRule],
        config: ScannerConfig | None = None,
        cache: FileContentCache | None = None,
    ) -> None:
        self.name = name
        self.technology = technology
        self.extensions = tuple(
            "." + ext.lower().lstrip(".") for ext in extensions
        )
        self.rules: tuple[SecurityRule, ...] = tuple(rules)
        self._prefilter = compile_prefilter(self.rules)
        self.config = config or ScannerConfig()
        self.cache = cache or FileContentCache.from_config(self.config)

    def attach(self, config: ScannerConfig, cache: FileContentCache) -> None:
        """Use an engine's config and shared cache. Call before scanning."""
        self.config = config
        self.cache = cache

    def can_process(self, path: str | Path) -> bool:
        return Path(path).name.lower().endswith(self.extensions)

    def scan_file(self, path: str | Path) -> list[SecurityViolation]:
        """Evaluate every rule against every line of ``path``.

        Violations come out in line order, then rule order. With early
        termination the scan stops at the per-file cap; without it the whole
        file is evaluated and the list is truncated to the cap.
        """
        path = Path(path)
        try:
            lines = self.cache.get_lines(path)
        except ReadError as e:
            logger.warning("Skipping unreadable file %s: %s", path, e)
            return []

        if not lines:
            return []

        if not self.might_match(lines):
            logger.debug("Quick reject: no pre-filter hits in %s", path)
            return []

        cap = self.config.max_violations_per_file
        early = self.config.early_termination
        context = RuleContext(path, lines)
        violations: list[SecurityViolation] = []

        for line_number, line in enumerate(lines, start=1):
            for rule in self.rules:
                if not rule.is_violated_by(line, line_number, context):
                    continue
                violations.append(
                    SecurityViolation.from_rule(rule, path, line_number, line)
                )
                if early and len(violations) >= cap:
                    logger.debug(
                        "Early termination in %s at line %d (%d violations)",
                        path,
                        line_number,
                        cap,
                    )
                    return violations

        return violations[:cap]

    def might_match(self, lines: Sequence[str]) -> bool:
        """True if any line hits any rule's pre-filter."""
        return any(
            pattern.search(line) for line in lines for pattern in self._prefilter
        )

    def __repr__(self) -> str:
        return (
            f"FileScanner(name={self.name!r}, extensions={self.extensions!r}, "
            f"rules={len(self.rules)})"
        )

