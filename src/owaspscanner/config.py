"""Scanner configuration — presets, YAML files, env vars, defaults."""

from __future__ import annotations

import dataclasses
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

_DEFAULT_MAX_LINE_LENGTH = 5000
_DEFAULT_MAX_VIOLATIONS = 100
_DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
_MB = 1024 * 1024

PRESETS = ("default", "fast", "thorough")


def _default_threads() -> int:
    return os.cpu_count() or 1


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "owaspscanner"
    return Path.home() / ".config" / "owaspscanner"


@dataclass(frozen=True)
class ScannerConfig:
    """Scan policy: parallelism, caching, and per-file limits.

    Instances are immutable; use :meth:`with_overrides` to derive a
    modified copy. Non-positive numeric limits fall back to their defaults.
    """

    parallel_processing: bool = True
    max_threads: int = field(default_factory=_default_threads)
    cache_file_content: bool = True
    max_line_length: int = _DEFAULT_MAX_LINE_LENGTH
    early_termination: bool = True
    max_violations_per_file: int = _DEFAULT_MAX_VIOLATIONS
    max_file_size_bytes: int = _DEFAULT_MAX_FILE_SIZE

    def __post_init__(self) -> None:
        fallbacks = {
            "max_threads": _default_threads(),
            "max_line_length": _DEFAULT_MAX_LINE_LENGTH,
            "max_violations_per_file": _DEFAULT_MAX_VIOLATIONS,
            "max_file_size_bytes": _DEFAULT_MAX_FILE_SIZE,
        }
        for name, fallback in fallbacks.items():
            if getattr(self, name) <= 0:
                object.__setattr__(self, name, fallback)

    @classmethod
    def default(cls) -> ScannerConfig:
        return cls()

    @classmethod
    def fast(cls) -> ScannerConfig:
        """Favour speed: twice the workers and a small per-file cap."""
        return cls(
            parallel_processing=True,
            max_threads=_default_threads() * 2,
            cache_file_content=True,
            early_termination=True,
            max_violations_per_file=10,
        )

    @classmethod
    def thorough(cls) -> ScannerConfig:
        """Favour completeness: every line of every file is evaluated."""
        return cls(
            parallel_processing=True,
            cache_file_content=True,
            early_termination=False,
            max_violations_per_file=sys.maxsize,
        )

    @classmethod
    def preset(cls, name: str) -> ScannerConfig:
        """Return the named preset (``default``, ``fast`` or ``thorough``)."""
        if name not in PRESETS:
            raise ValueError(
                f"Unknown preset '{name}' (expected one of: {', '.join(PRESETS)})"
            )
        return getattr(cls, name)()

    def with_overrides(self, **changes: Any) -> ScannerConfig:
        """Return a copy with the given fields replaced. ``None`` values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return self
        return dataclasses.replace(self, **changes)

    @property
    def max_file_size_mb(self) -> float:
        return self.max_file_size_bytes / _MB

    @classmethod
    def load(cls, path: str | Path | None = None) -> ScannerConfig:
        """Load config from a YAML file, the XDG config dir, and env vars.

        Precedence, lowest first: preset defaults, config file, environment.
        """
        if path is not None:
            config = load_config(path)
        else:
            default_file = _default_config_dir() / "config.yaml"
            config = load_config(default_file) if default_file.is_file() else cls()

        env_preset = os.environ.get("OWASPSCANNER_PRESET")
        if env_preset:
            base = cls.preset(env_preset)
            config = base.with_overrides(**_explicit_fields(config, cls()))

        return config.with_env_overrides()

    def with_env_overrides(self) -> ScannerConfig:
        """Apply the numeric and flag ``OWASPSCANNER_*`` variables to a copy.

        ``OWASPSCANNER_PRESET`` is only consulted by :meth:`load`.
        """
        overrides: dict[str, Any] = {}
        env_threads = os.environ.get("OWASPSCANNER_THREADS")
        if env_threads:
            overrides["max_threads"] = int(env_threads)
        env_size = os.environ.get("OWASPSCANNER_MAX_FILE_SIZE_MB")
        if env_size:
            overrides["max_file_size_bytes"] = int(float(env_size) * _MB)
        env_violations = os.environ.get("OWASPSCANNER_MAX_VIOLATIONS")
        if env_violations:
            overrides["max_violations_per_file"] = int(env_violations)
        if _env_flag("OWASPSCANNER_NO_CACHE"):
            overrides["cache_file_content"] = False
        if _env_flag("OWASPSCANNER_NO_PARALLEL"):
            overrides["parallel_processing"] = False

        return self.with_overrides(**overrides)


def load_config(path: str | Path) -> ScannerConfig:
    """Build a ScannerConfig from a YAML file.

    The mapping may name a ``preset`` and any ScannerConfig field;
    ``max_file_size_mb`` is accepted in place of ``max_file_size_bytes``.
    """
    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError("Scanner config YAML must be a mapping")
    return _build_config(data)


def _build_config(data: dict) -> ScannerConfig:
    data = dict(data)
    base = ScannerConfig.preset(data.pop("preset", "default"))

    if "max_file_size_mb" in data:
        size_mb = data.pop("max_file_size_mb")
        if isinstance(size_mb, bool) or not isinstance(size_mb, (int, float)):
            raise ValueError(
                f"Scanner config key 'max_file_size_mb' must be a number, got {size_mb!r}"
            )
        data["max_file_size_bytes"] = int(size_mb * _MB)

    known = {f.name for f in dataclasses.fields(ScannerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown scanner config keys: {', '.join(unknown)}")

    _check_types(data, base)
    return base.with_overrides(**data)


def _check_types(data: dict, base: ScannerConfig) -> None:
    """Reject values whose type differs from the field's (bool is not an int here)."""
    for name, value in data.items():
        if value is None:
            continue
        expected = type(getattr(base, name))
        if isinstance(value, bool) != (expected is bool) or not isinstance(value, expected):
            raise ValueError(
                f"Scanner config key '{name}' must be {expected.__name__}, got {value!r}"
            )


def _explicit_fields(config: ScannerConfig, baseline: ScannerConfig) -> dict[str, Any]:
    """Fields of ``config`` that differ from ``baseline``."""
    return {
        f.name: getattr(config, f.name)
        for f in dataclasses.fields(config)
        if getattr(config, f.name) != getattr(baseline, f.name)
    }


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")
