"""Clone workers — drain discovered repositories into the staging tree."""

from __future__ import annotations

import logging
import os
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from repopack.errors import GitError
from repopack.git import DEFAULT_TIMEOUT, Remote, clone_branch, current_branch, mirror_remotes
from repopack.scanner import Channel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CloneJob:
    source: str
    destination_root: Path

    @property
    def name(self) -> str:
        return os.path.basename(os.path.normpath(self.source))

    @property
    def destination(self) -> Path:
        return Path(self.destination_root) / self.name


@dataclass(frozen=True)
class CloneOptions:
    depth: int = 1
    timeout: int = DEFAULT_TIMEOUT
    retries: int = 0
    backoff: float = 1.0


@dataclass
class CloneResult:
    source: str
    destination: Path
    branch: Optional[str] = None
    remotes: list[Remote] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def name(self) -> str:
        return self.destination.name


def _clone_with_retry(job: CloneJob, branch: str, options: CloneOptions) -> int:
    """Clone, retrying transport failures. Returns the number of attempts made."""
    attempt = 0
    while True:
        attempt += 1
        try:
            clone_branch(
                job.source,
                job.destination,
                branch,
                depth=options.depth,
                timeout=options.timeout,
            )
            return attempt
        except GitError as exc:
            if attempt > options.retries:
                raise
            delay = options.backoff * (2 ** (attempt - 1))
            logger.warning(
                "Clone of %s failed (attempt %d/%d), retrying in %.1fs: %s",
                job.source, attempt, options.retries + 1, delay, exc,
            )
            # the destination is ours; the next attempt needs it empty
            shutil.rmtree(job.destination, ignore_errors=True)
            job.destination.mkdir(exist_ok=True)
            time.sleep(delay)


def clone_repo(job: CloneJob, options: CloneOptions | None = None) -> CloneResult:
    """Clone one repository's current branch and copy its remotes across.

    Git failures do not raise; they come back on the result so one bad
    repository does not stop the others.
    """
    options = options or CloneOptions()
    result = CloneResult(source=job.source, destination=job.destination)

    # mkdir is the claim: a second job with the same name fails here
    # and never touches the directory the first one is cloning into.
    try:
        job.destination.mkdir()
    except FileExistsError:
        result.error = f"destination already exists: {job.destination}"
        logger.error("Cannot clone %s: %s", job.source, result.error)
        return result
    except OSError as exc:
        result.error = f"cannot create {job.destination}: {exc.strerror or exc}"
        logger.error("Cannot clone %s: %s", job.source, result.error)
        return result

    try:
        result.branch = current_branch(job.source)
        logger.info("Cloning %s (%s)", job.source, result.branch)
        result.attempts = _clone_with_retry(job, result.branch, options)
        result.remotes = mirror_remotes(job.source, job.destination)
    except GitError as exc:
        result.error = str(exc)
        logger.error("Clone of %s failed: %s", job.source, exc)
        # nothing half-cloned or half-rewritten may reach the archive
        shutil.rmtree(job.destination, ignore_errors=True)
        result.remotes = []
        return result

    logger.info("Cloned %s -> %s", job.source, job.destination)
    return result


def run_workers(
    channel: Channel,
    destination_root: str | os.PathLike,
    *,
    workers: int = 4,
    options: CloneOptions | None = None,
    fail_fast: bool = False,
) -> list[CloneResult]:
    """Run a pool of clone workers until channel is closed and drained.

    Each path read from the channel is cloned exactly once. Blocks until
    every worker has finished. With fail_fast the first failed clone
    cancels the channel, which also stops the walk feeding it.
    """
    destination_root = Path(destination_root)
    options = options or CloneOptions()
    results: list[CloneResult] = []
    lock = threading.Lock()

    def _worker() -> None:
        try:
            for source in channel:
                result = clone_repo(CloneJob(source, destination_root), options)
                with lock:
                    results.append(result)
                if not result.ok and fail_fast:
                    channel.cancel()
                    return
        except BaseException:
            channel.cancel()
            raise

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clone") as pool:
        futures = [pool.submit(_worker) for _ in range(workers)]
        try:
            for future in as_completed(futures):
                future.result()
        except BaseException:
            # must run before the pool joins, or the workers drain the whole walk first
            channel.cancel()
            raise

    return results
