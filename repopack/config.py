"""Run configuration — defaults, REPOPACK_* environment overrides, validation."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional

from repopack.errors import ConfigError

ENV_PREFIX = "REPOPACK_"

# Directory names never walked into. Git metadata cannot hold a working copy.
DEFAULT_EXCLUDE = frozenset({".git"})

# Fields that may be set from the environment, with their minimum value.
_ENV_INTS = {
    "clone_workers": 1,
    "walk_workers": 1,
    "channel_size": 1,
    "clone_depth": 0,
    "git_timeout": 1,
    "clone_retries": 0,
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def compile_pattern(text: str) -> re.Pattern:
    """Compile the folder-name pattern, turning regex errors into ConfigError."""
    try:
        return re.compile(text)
    except re.error as exc:
        raise ConfigError(
            f"invalid name pattern {text!r}: {exc}",
            details={"pattern": text},
        ) from exc


@dataclass(frozen=True)
class SyncConfig:
    """Everything that stays fixed for one run."""

    pattern: re.Pattern
    root: Path = field(default_factory=Path.cwd)
    aux_files: tuple[Path, ...] = ()

    # Concurrency
    clone_workers: int = 4
    walk_workers: int = 8
    channel_size: int = 100

    # Clone depth (0 = whole history of the current branch)
    clone_depth: int = 1

    # Timeout for each git command (seconds)
    git_timeout: int = 300

    clone_retries: int = 0
    retry_backoff: float = 1.0

    fail_fast: bool = False
    keep_staging: bool = False

    # Where the archive lands; None means the system temp dir
    output_dir: Optional[Path] = None

    exclude: frozenset[str] = DEFAULT_EXCLUDE
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, pattern: re.Pattern | str, environ=None, **overrides) -> "SyncConfig":
        """Build a config from defaults, then REPOPACK_* variables, then overrides.

        Overrides whose value is None are ignored so argparse defaults can be
        passed straight through.
        """
        if isinstance(pattern, str):
            pattern = compile_pattern(pattern)
        environ = os.environ if environ is None else environ

        values: dict = {}
        for name, minimum in _ENV_INTS.items():
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None or raw == "":
                continue
            values[name] = _parse_int(ENV_PREFIX + name.upper(), raw, minimum)

        level = environ.get(ENV_PREFIX + "LOG_LEVEL")
        if level:
            values["log_level"] = level

        known = {f.name for f in fields(cls)}
        for key, value in overrides.items():
            if key not in known:
                raise TypeError(f"unknown config field: {key}")
            if value is not None:
                values[key] = value

        config = cls(pattern=pattern, **values)
        return config.normalized()

    def normalized(self) -> "SyncConfig":
        """Return a copy with paths resolved and collections frozen."""
        return replace(
            self,
            root=Path(os.path.expanduser(str(self.root))).resolve(),
            aux_files=tuple(Path(p).expanduser() for p in self.aux_files),
            output_dir=Path(self.output_dir).expanduser().resolve() if self.output_dir else None,
            exclude=frozenset(self.exclude),
            log_level=self.log_level.upper(),
        )

    def validate(self) -> None:
        """Raise ConfigError for anything that would fail later in the run."""
        for name, minimum in _ENV_INTS.items():
            value = getattr(self, name)
            if value < minimum:
                raise ConfigError(
                    f"{name} must be >= {minimum}, got {value}",
                    details={name: value},
                )
        if self.retry_backoff < 0:
            raise ConfigError("retry_backoff must be >= 0")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(
                f"log level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}"
            )
        if not self.root.is_dir():
            raise ConfigError(f"scan root is not a directory: {self.root}")
        for path in self.aux_files:
            if not path.is_file():
                raise ConfigError(f"auxiliary file not found: {path}", details={"path": str(path)})
        if self.output_dir is not None and not self.output_dir.is_dir():
            raise ConfigError(f"output directory does not exist: {self.output_dir}")


def _parse_int(name: str, raw: str, minimum: int) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value
