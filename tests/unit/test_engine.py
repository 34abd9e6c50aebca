"""Tests for ScanEngine: walking, dispatch, parallelism and failures."""

from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest
from conftest import PARAMETERIZATION, make_rule, repository_source

from owaspscanner.config import ScannerConfig
from owaspscanner.scanner.engine import ScanEngine
from owaspscanner.scanner.file_scanner import FileScanner
from owaspscanner.scanner.languages.dotnet import create_dotnet_scanner
from owaspscanner.scanner.reader import MultiEncodingReader, ReadError


def _summary(violations) -> set[tuple[str, str, int]]:
    return {(v.rule_id, Path(v.file_path).name, v.line_number) for v in violations}


def _text_scanner(*rules) -> FileScanner:
    return FileScanner("text", "Text", ["txt"], rules or [make_rule()])


EXPECTED_TREE = {
    ("DOTNET-SEC-003", "UserRepository.cs", 6),
    ("DOTNET-SEC-003", "OrderRepository.cs", 6),
    ("DOTNET-SEC-004", "Profile.cshtml", 2),
}


class TestScanDirectory:
    def test_finds_violations_across_tree(self, vulnerable_tree: Path):
        engine = ScanEngine(scanners=[create_dotnet_scanner()])

        violations = engine.scan_directory(vulnerable_tree)

        assert _summary(violations) == EXPECTED_TREE

    def test_parallel_matches_sequential(self, vulnerable_tree: Path):
        parallel = ScanEngine(
            config=ScannerConfig(max_threads=4),
            scanners=[create_dotnet_scanner()],
        )
        sequential = ScanEngine(
            config=ScannerConfig(parallel_processing=False),
            scanners=[create_dotnet_scanner()],
        )

        assert set(parallel.scan_directory(vulnerable_tree)) == set(
            sequential.scan_directory(vulnerable_tree)
        )

    def test_result_counts(self, vulnerable_tree: Path):
        engine = ScanEngine(scanners=[create_dotnet_scanner()])

        result = engine.scan(vulnerable_tree)

        assert result.files_scanned == 3
        assert result.files_skipped == 0
        assert result.files_failed == 0
        assert not result.stopped
        assert result.directory == str(vulnerable_tree.resolve())
        assert result.duration >= 0

    def test_repeated_scans_agree(self, vulnerable_tree: Path):
        engine = ScanEngine(scanners=[create_dotnet_scanner()])

        first = set(engine.scan_directory(vulnerable_tree))

        assert set(engine.scan_directory(vulnerable_tree)) == first
        assert len(engine.cache) == 3

    def test_rescan_sees_modified_file(self, vulnerable_tree: Path):
        engine = ScanEngine(scanners=[create_dotnet_scanner()])
        engine.scan_directory(vulnerable_tree)
        path = vulnerable_tree / "Data" / "UserRepository.cs"

        path.write_text(repository_source(PARAMETERIZATION))
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 10_000_000_000))

        assert _summary(engine.scan_directory(vulnerable_tree)) == EXPECTED_TREE - {
            ("DOTNET-SEC-003", "UserRepository.cs", 6)
        }

    def test_empty_directory(self, tmp_path: Path):
        result = ScanEngine(scanners=[_text_scanner()]).scan(tmp_path)

        assert result.violations == []
        assert result.files_scanned == 0


class TestFailures:
    def test_corrupt_file_does_not_affect_others(self, tmp_path: Path):
        for i in range(5):
            (tmp_path / f"Repo{i}.cs").write_text(repository_source())
        (tmp_path / "Corrupt.cs").write_bytes(bytes(range(256)) * 4)
        engine = ScanEngine(scanners=[create_dotnet_scanner()])

        result = engine.scan(tmp_path)

        assert result.files_failed == 0
        assert result.files_scanned == 6
        flagged = {Path(v.file_path).name for v in result.violations}
        assert {f"Repo{i}.cs" for i in range(5)} <= flagged

    def test_failing_rule_isolated_to_its_file(self, tmp_path: Path):
        def check(line, line_number, context):
            if "boom" in line:
                raise RuntimeError("rule exploded")
            return True

        (tmp_path / "a.txt").write_text("TODO boom\n")
        (tmp_path / "b.txt").write_text("TODO ok\n")
        (tmp_path / "c.txt").write_text("TODO ok\n")
        engine = ScanEngine(scanners=[_text_scanner(make_rule(check=check))])

        result = engine.scan(tmp_path)

        assert result.files_failed == 1
        assert result.files_scanned == 2
        assert {Path(v.file_path).name for v in result.violations} == {"b.txt", "c.txt"}

    def test_missing_root(self, tmp_path: Path):
        engine = ScanEngine(scanners=[_text_scanner()])

        with pytest.raises(FileNotFoundError):
            engine.scan(tmp_path / "missing")

    def test_root_is_a_file(self, tmp_path: Path):
        path = tmp_path / "notes.txt"
        path.write_text("TODO\n")
        engine = ScanEngine(scanners=[_text_scanner()])

        with pytest.raises(NotADirectoryError):
            engine.scan(path)

    def test_walk_error_skips_only_that_subtree(self, tmp_path: Path, monkeypatch, caplog):
        (tmp_path / "a.txt").write_text("TODO\n")
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "b.txt").write_text("TODO\n")
        real_walk = os.walk

        def walk_with_locked_dir(top, onerror=None, **kwargs):
            onerror(PermissionError(13, "Permission denied", str(Path(top) / "locked")))
            yield from real_walk(top, onerror=onerror, **kwargs)

        monkeypatch.setattr(os, "walk", walk_with_locked_dir)
        engine = ScanEngine(scanners=[_text_scanner()])

        result = engine.scan(tmp_path)

        assert {Path(v.file_path).name for v in result.violations} == {"a.txt", "b.txt"}
        assert "Skipping unreadable directory" in caplog.text
        assert "locked" in caplog.text

    def test_file_unreadable_at_scan_time(self, tmp_path: Path, monkeypatch, caplog):
        for name in ("a.txt", "locked.txt", "c.txt"):
            (tmp_path / name).write_text("TODO\n")
        real_read = MultiEncodingReader.read

        def read_unless_locked(self, path):
            if Path(path).name == "locked.txt":
                raise ReadError(f"Unable to read {path}: permission denied")
            return real_read(self, path)

        monkeypatch.setattr(MultiEncodingReader, "read", read_unless_locked)
        engine = ScanEngine(scanners=[_text_scanner()])

        result = engine.scan(tmp_path)

        assert {Path(v.file_path).name for v in result.violations} == {"a.txt", "c.txt"}
        assert "Skipping unreadable file" in caplog.text
        assert "locked.txt" in caplog.text


class TestWalk:
    def test_large_files_skipped(self, tmp_path: Path):
        (tmp_path / "big.txt").write_text("TODO " * 10)
        (tmp_path / "small.txt").write_text("TODO")
        engine = ScanEngine(
            config=ScannerConfig(max_file_size_bytes=10),
            scanners=[_text_scanner()],
        )

        result = engine.scan(tmp_path)

        assert result.files_skipped == 1
        assert {Path(v.file_path).name for v in result.violations} == {"small.txt"}

    def test_skip_dirs_and_excludes(self, tmp_path: Path):
        for rel in (".git/a.txt", "bin/b.txt", "src/c.txt", "vendor/d.txt", "src/skip.txt"):
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("TODO\n")
        engine = ScanEngine(
            scanners=[_text_scanner()],
            exclude_patterns=["vendor", "skip.txt"],
        )

        violations = engine.scan_directory(tmp_path)

        assert {Path(v.file_path).name for v in violations} == {"c.txt"}

    def test_unhandled_extensions_ignored(self, tmp_path: Path):
        (tmp_path / "notes.md").write_text("TODO\n")

        result = ScanEngine(scanners=[_text_scanner()]).scan(tmp_path)

        assert result.files_scanned == 0


class TestEngine:
    def test_stop_halts_remaining_files(self, tmp_path: Path, sequential_config):
        for name in ("a.txt", "b.txt", "c.txt"):
            (tmp_path / name).write_text("TODO\n")
        engine = ScanEngine(config=sequential_config)

        def check(line, line_number, context):
            engine.stop()
            return True

        engine.register_scanner(_text_scanner(make_rule(check=check)))

        result = engine.scan(tmp_path)

        assert result.stopped
        assert result.files_scanned == 1
        assert len(result.violations) == 1

        # A new scan starts with the stop flag cleared.
        assert engine.scan(tmp_path).files_scanned == 1

    def test_scan_file_runs_every_matching_scanner(self, tmp_path: Path, todo_scanner):
        path = tmp_path / "notes.txt"
        path.write_text("TODO\n")
        engine = ScanEngine(scanners=[todo_scanner, _text_scanner(make_rule("OTHER"))])

        assert {v.rule_id for v in engine.scan_file(path)} == {"TEST-001", "OTHER"}

    def test_registered_scanners_share_cache(self, todo_scanner):
        engine = ScanEngine(scanners=[todo_scanner, create_dotnet_scanner()])

        assert all(s.cache is engine.cache for s in engine.scanners)
        assert all(s.config is engine.config for s in engine.scanners)

    def test_config_change_reattaches_scanners(self, todo_scanner):
        engine = ScanEngine(scanners=[todo_scanner])

        engine.config = ScannerConfig(cache_file_content=False)

        assert not engine.cache.enabled
        assert todo_scanner.cache is engine.cache
        assert todo_scanner.config is engine.config

    def test_stop_in_parallel_lets_running_files_finish(self, tmp_path: Path):
        for name in ("a.txt", "b.txt", "c.txt", "d.txt"):
            (tmp_path / name).write_text("TODO\n")
        engine = ScanEngine(config=ScannerConfig(max_threads=2))
        both_running = threading.Barrier(2, timeout=10)

        def check(line, line_number, context):
            # Two files are in flight when the stop request arrives.
            both_running.wait()
            engine.stop()
            return True

        engine.register_scanner(_text_scanner(make_rule(check=check)))

        result = engine.scan(tmp_path)

        assert result.stopped
        assert result.files_scanned == 2
        assert len(result.violations) == 2

    def test_cap_applies_across_scanners(self, tmp_path: Path):
        path = tmp_path / "notes.txt"
        path.write_text("TODO\n" * 5)
        engine = ScanEngine(
            config=ScannerConfig(max_violations_per_file=2),
            scanners=[_text_scanner(make_rule("A")), _text_scanner(make_rule("B"))],
        )

        violations = engine.scan_file(path)

        assert [(v.rule_id, v.line_number) for v in violations] == [("A", 1), ("A", 2)]
        assert len(engine.scan_directory(tmp_path)) == 2
