"""Per-run state: timestamp, staging directory, archive location."""

from __future__ import annotations

import logging
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from repopack.config import SyncConfig
from repopack.errors import ConfigError

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "SYNC_"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


class RunContext:
    """Owns the staging directory for one run.

    Use as a context manager: the staging directory is created on enter
    and removed exactly once on exit, whether the run succeeded or not,
    unless the config asks to keep it.
    """

    def __init__(self, config: SyncConfig, now: Optional[datetime] = None) -> None:
        self.config = config
        self.timestamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
        self.staging_dir: Optional[Path] = None
        self._cleaned = False

    @property
    def archive_name(self) -> str:
        return f"{ARCHIVE_PREFIX}{self.timestamp}"

    @property
    def output_dir(self) -> Path:
        return self.config.output_dir or Path(tempfile.gettempdir())

    @property
    def archive_path(self) -> Path:
        return self.output_dir / f"{self.archive_name}.zip"

    @property
    def fallback_archive_path(self) -> Path:
        """Archive named after the staging dir, unique per run even within one second."""
        return self.output_dir / f"{self.staging_dir.name}.zip"

    def __enter__(self) -> "RunContext":
        try:
            self.staging_dir = Path(tempfile.mkdtemp(prefix=f"{self.archive_name}_"))
        except OSError as exc:
            raise ConfigError(f"cannot create staging directory: {exc}") from exc
        logger.info("Staging into %s", self.staging_dir)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        if self._cleaned or self.staging_dir is None:
            return
        self._cleaned = True
        if self.config.keep_staging:
            logger.info("Keeping staging directory %s", self.staging_dir)
            return
        shutil.rmtree(self.staging_dir, ignore_errors=True)
        logger.debug("Removed staging directory %s", self.staging_dir)
