"""CLI command: owaspscanner scan <directory> — static security scan."""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from owaspscanner.config import PRESETS, ScannerConfig
from owaspscanner.scanner.engine import ScanEngine
from owaspscanner.scanner.languages.dotnet import create_dotnet_scanner
from owaspscanner.scanner.models import ScanResult, Severity
from owaspscanner.scanner.report import (
    count_by_severity,
    export_json,
    sort_violations,
    top_violations,
)

console = Console(stderr=True)

_SEVERITY_COLORS = {
    Severity.CRITICAL: "red",
    Severity.HIGH: "magenta",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "blue",
}

_MB = 1024 * 1024


@click.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--preset",
    type=click.Choice(PRESETS),
    default=None,
    help="Named configuration: default, fast, or thorough.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a YAML scanner configuration file.",
)
@click.option("--threads", type=click.IntRange(min=1), default=None, help="Worker thread count.")
@click.option(
    "--max-file-size",
    type=click.IntRange(min=1),
    default=None,
    help="Skip files larger than this many MB.",
)
@click.option(
    "--max-violations",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum violations reported per file.",
)
@click.option("--no-cache", is_flag=True, help="Disable file content caching.")
@click.option("--no-parallel", is_flag=True, help="Scan files sequentially.")
@click.option(
    "--no-early-termination",
    is_flag=True,
    help="Evaluate whole files even after the per-file cap is reached.",
)
@click.option(
    "--output",
    "-o",
    "output_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write violations as JSON to this file.",
)
@click.option(
    "--exclude",
    "-e",
    multiple=True,
    help="File or directory names to exclude from the scan.",
)
def scan(
    directory: str,
    preset: str | None,
    config_path: str | None,
    threads: int | None,
    max_file_size: int | None,
    max_violations: int | None,
    no_cache: bool,
    no_parallel: bool,
    no_early_termination: bool,
    output_path: str | None,
    exclude: tuple[str, ...],
) -> None:
    """Scan source code for OWASP security violations."""
    if preset and config_path:
        raise click.UsageError("--preset and --config cannot be combined")

    try:
        if preset:
            base = ScannerConfig.preset(preset).with_env_overrides()
        else:
            base = ScannerConfig.load(config_path)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--config" if config_path else None) from e

    config = base.with_overrides(
        max_threads=threads,
        max_file_size_bytes=max_file_size * _MB if max_file_size else None,
        max_violations_per_file=max_violations,
        cache_file_content=False if no_cache else None,
        parallel_processing=False if no_parallel else None,
        early_termination=False if no_early_termination else None,
    )

    console.print(
        f"[bold]OWASP Scanner[/bold] scanning [cyan]{escape(directory)}[/cyan] "
        f"with preset [cyan]{preset or 'default'}[/cyan]\n"
    )

    engine = ScanEngine(config=config, exclude_patterns=list(exclude))
    engine.register_scanner(create_dotnet_scanner())
    try:
        result = engine.scan(directory)
    except (FileNotFoundError, NotADirectoryError) as e:
        raise click.ClickException(str(e)) from e

    if output_path:
        written = export_json(result.violations, output_path)
        console.print(f"Results written to [cyan]{escape(str(written))}[/cyan]")

    if not result.violations:
        console.print("[green]No violations.[/green]")
        _print_summary(result)
        return

    table = Table(title="Violations", show_lines=False)
    table.add_column("Severity", style="bold", width=10)
    table.add_column("Rule")
    table.add_column("File", style="cyan")
    table.add_column("Line", justify="right")
    table.add_column("Snippet", max_width=60)

    for violation in sort_violations(result.violations):
        color = _SEVERITY_COLORS.get(violation.severity, "white")
        table.add_row(
            f"[{color}]{violation.severity.value}[/{color}]",
            violation.rule_id,
            escape(_shorten_path(violation.file_path, result.directory)),
            str(violation.line_number),
            escape(violation.snippet[:60]),
        )

    console.print(table)
    _print_summary(result)

    urgent = top_violations(result.violations)
    if urgent:
        console.print("\n[bold]Top issues to address first:[/bold]")
        for v in urgent:
            console.print(
                f"- {v.rule_id}: {escape(v.description)} in "
                f"{escape(_shorten_path(v.file_path, result.directory))} (line {v.line_number})"
            )
        sys.exit(1)


def _print_summary(result: ScanResult) -> None:
    console.print(
        f"\nScanned {result.files_scanned} files "
        f"({result.files_skipped} skipped, {result.files_failed} failed) "
        f"in {result.duration:.2f}s"
    )
    for severity, count in count_by_severity(result.violations).items():
        color = _SEVERITY_COLORS[severity]
        console.print(f"[{color}]{severity.value}[/{color}]: {count}")
    console.print(f"Total violations: {len(result.violations)}")


def _shorten_path(file_path: str, base_dir: str) -> str:
    """Shorten file path relative to scan directory."""
    base = base_dir.replace("\\", "/")
    if file_path.startswith(base):
        return file_path[len(base) :].lstrip("/")
    return file_path
