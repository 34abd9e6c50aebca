"""Violation reporting — JSON export, ordering, and severity counts."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

from owaspscanner.scanner.models import SecurityViolation, Severity

logger = logging.getLogger(__name__)


def violations_to_dicts(violations: Iterable[SecurityViolation]) -> list[dict]:
    return [v.to_dict() for v in violations]


def export_json(violations: Iterable[SecurityViolation], output_path: str | Path) -> Path:
    """Write violations as a pretty-printed JSON array; return the path written."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(violations_to_dicts(violations), indent=2)
    output_path.write_text(payload + "\n", encoding="utf-8")
    logger.info("Scan results exported to %s", output_path)
    return output_path


def sort_violations(violations: Iterable[SecurityViolation]) -> list[SecurityViolation]:
    """Most severe first, then by file and line."""
    return sorted(
        violations,
        key=lambda v: (v.severity.rank, v.file_path, v.line_number, v.rule_id),
    )


def count_by_severity(violations: Iterable[SecurityViolation]) -> dict[Severity, int]:
    counts = {severity: 0 for severity in Severity}
    for v in violations:
        counts[v.severity] += 1
    return counts


def top_violations(
    violations: Iterable[SecurityViolation], limit: int = 5
) -> list[SecurityViolation]:
    """The first ``limit`` CRITICAL or HIGH violations, most severe first."""
    urgent = [
        v for v in violations if v.severity in (Severity.CRITICAL, Severity.HIGH)
    ]
    return sort_violations(urgent)[:limit]
