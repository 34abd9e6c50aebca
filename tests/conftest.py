"""Shared test fixtures."""

from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path

import pytest

from owaspscanner.config import ScannerConfig
from owaspscanner.scanner.file_scanner import FileScanner
from owaspscanner.scanner.languages.dotnet import create_dotnet_scanner
from owaspscanner.scanner.models import Severity
from owaspscanner.scanner.rules import SecurityRule

VULNERABLE_SQL = (
    "var cmd = new SqlCommand(\"SELECT * FROM Users WHERE Username = '\" "
    "+ username + \"'\", conn);"
)
PARAMETERIZATION = 'cmd.Parameters.AddWithValue("@Username", username);'


def repository_source(*extra_lines: str) -> str:
    """A small ADO.NET repository class with ``extra_lines`` after the command."""
    lines = [
        "using System.Data.SqlClient;",
        "public class UserRepository {",
        "    public User GetUser(string username) {",
        "        using (var conn = new SqlConnection(connectionString)) {",
        "            conn.Open();",
        "            " + VULNERABLE_SQL,
        *("            " + line for line in extra_lines),
        "            var reader = cmd.ExecuteReader();",
        "        }",
        "    }",
        "}",
    ]
    return "\n".join(lines) + "\n"


def make_rule(
    rule_id: str = "TEST-001",
    pattern: str = "TODO",
    check: Callable | None = None,
    severity: Severity = Severity.LOW,
) -> SecurityRule:
    return SecurityRule(
        id=rule_id,
        description=f"Test rule {rule_id}",
        severity=severity,
        remediation="Fix it.",
        reference="https://example.com/rules",
        pattern=re.compile(pattern),
        check=check or (lambda line, line_number, context: True),
    )


@pytest.fixture
def todo_rule() -> SecurityRule:
    return make_rule()


@pytest.fixture
def sequential_config() -> ScannerConfig:
    return ScannerConfig(parallel_processing=False)


@pytest.fixture
def todo_scanner(todo_rule: SecurityRule) -> FileScanner:
    return FileScanner(
        name="todo",
        technology="Text",
        extensions=["txt"],
        rules=[todo_rule],
    )


@pytest.fixture
def dotnet_scanner() -> FileScanner:
    return create_dotnet_scanner()


@pytest.fixture
def vulnerable_tree(tmp_path: Path) -> Path:
    """A tree with three vulnerable C# files and some noise."""
    (tmp_path / "Data").mkdir()
    (tmp_path / "Data" / "UserRepository.cs").write_text(repository_source())
    (tmp_path / "Data" / "OrderRepository.cs").write_text(
        repository_source().replace("UserRepository", "OrderRepository")
    )
    (tmp_path / "Views").mkdir()
    (tmp_path / "Views" / "Profile.cshtml").write_text(
        "<div>\n    @Html.Raw(Model.Bio)\n</div>\n"
    )
    (tmp_path / "README.md").write_text("SqlCommand + docs are not scanned\n")
    return tmp_path
