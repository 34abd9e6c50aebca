"""Scanner data models — violations and scan results."""

from __future__ import annotations

import enum
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from owaspscanner.scanner.rules import SecurityRule


class Severity(enum.Enum):
    """Violation severity level."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Sort key: lower is more severe."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


@dataclass(frozen=True)
class SecurityViolation:
    """A single rule hit on one line of one file."""

    rule_id: str
    description: str
    file_path: str
    line_number: int
    snippet: str
    severity: Severity
    remediation: str = ""
    reference: str = ""

    @classmethod
    def from_rule(
        cls,
        rule: SecurityRule,
        file_path: str | Path,
        line_number: int,
        line: str,
    ) -> SecurityViolation:
        return cls(
            rule_id=rule.id,
            description=rule.description,
            file_path=Path(file_path).as_posix(),
            line_number=line_number,
            snippet=line.strip(),
            severity=rule.severity,
            remediation=rule.remediation,
            reference=rule.reference,
        )

    def to_dict(self) -> dict[str, str | int]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass
class ScanResult:
    """Aggregate result of a directory scan."""

    directory: str
    violations: list[SecurityViolation] = field(default_factory=list)
    files_scanned: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    duration: float = 0.0
    stopped: bool = False
    timestamp: float = field(default_factory=time.time)
