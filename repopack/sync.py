"""Run pipeline — discover, clone and package in one call."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from repopack.cloner import CloneOptions, CloneResult, run_workers
from repopack.config import SyncConfig
from repopack.context import RunContext
from repopack.errors import ArchiveExistsError, CloneError, DiscoveryError
from repopack.packager import copy_aux_files, create_archive
from repopack.scanner import Channel, SkippedPath, Walker

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    archive: Optional[Path] = None
    staging_dir: Optional[Path] = None
    results: list[CloneResult] = field(default_factory=list)
    skipped: list[SkippedPath] = field(default_factory=list)

    @property
    def cloned(self) -> list[CloneResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[CloneResult]:
        return [r for r in self.results if not r.ok]


def run_sync(config: SyncConfig) -> SyncReport:
    """Clone every matching repository under config.root and zip the result.

    The walk runs on its own thread and the clone workers on a pool,
    joined by one channel. Packaging starts only after both are done.
    """
    config.validate()
    report = SyncReport()

    with RunContext(config) as ctx:
        report.staging_dir = ctx.staging_dir
        channel = Channel(config.channel_size)
        walker = Walker(
            config.root,
            config.pattern,
            workers=config.walk_workers,
            exclude=config.exclude,
            # a scan root above the temp dir must not find our own clones
            skip_paths=[ctx.staging_dir.resolve()],
            fail_fast=config.fail_fast,
        )
        walk_errors: list[BaseException] = []

        def _walk() -> None:
            try:
                walker.run(channel)
            except BaseException as exc:
                walk_errors.append(exc)

        walk_thread = threading.Thread(target=_walk, name="walker", daemon=True)
        walk_thread.start()
        try:
            report.results = run_workers(
                channel,
                ctx.staging_dir,
                workers=config.clone_workers,
                options=CloneOptions(
                    depth=config.clone_depth,
                    timeout=config.git_timeout,
                    retries=config.clone_retries,
                    backoff=config.retry_backoff,
                ),
                fail_fast=config.fail_fast,
            )
        finally:
            if walk_thread.is_alive() and not channel.closed:
                channel.cancel()
            walk_thread.join()

        if walk_errors:
            raise walk_errors[0]
        report.skipped = list(walker.skipped)

        if config.fail_fast:
            if report.skipped:
                first = report.skipped[0]
                raise DiscoveryError(
                    f"cannot read {first.path}: {first.reason}",
                    details={"path": first.path},
                )
            if report.failed:
                first = report.failed[0]
                raise CloneError(
                    f"{first.source}: {first.error}",
                    source=first.source,
                )

        if not report.results:
            logger.warning("No repositories matching %r under %s", config.pattern.pattern, config.root)

        copy_aux_files(config.aux_files, ctx.staging_dir)
        try:
            report.archive = create_archive(ctx.staging_dir, ctx.archive_path)
        except ArchiveExistsError:
            logger.warning(
                "%s already exists, writing %s instead",
                ctx.archive_path, ctx.fallback_archive_path,
            )
            report.archive = create_archive(ctx.staging_dir, ctx.fallback_archive_path)

    return report
