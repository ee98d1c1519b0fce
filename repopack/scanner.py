"""Repo discovery — walk a directory tree and stream matching git repositories.

The walk fans out over a thread pool, one task per directory. Each
repository found is put on a bounded Channel as soon as it is seen, so
cloning can start before the walk is over. A PendingCounter tracks the
outstanding directory tasks; the channel is closed only once it drops
back to zero.
"""

from __future__ import annotations

import logging
import os
import queue
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from repopack.config import DEFAULT_EXCLUDE
from repopack.errors import ChannelClosed, DiscoveryError
from repopack.git import is_repository

logger = logging.getLogger(__name__)

# How often blocked put/get calls wake up to look for cancellation.
POLL_INTERVAL = 0.1


class Channel:
    """Bounded hand-off queue with an explicit end-of-stream.

    ``close()`` is called by the producer side once nothing more will be
    put; consumers still drain whatever is queued before they see
    ChannelClosed. ``cancel()`` stops both sides right away.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()
        self._cancelled = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def put(self, item) -> None:
        """Block until there is room for item. Raises ChannelClosed after close/cancel."""
        while True:
            if self._cancelled.is_set() or self._closed.is_set():
                raise ChannelClosed()
            try:
                self._queue.put(item, timeout=POLL_INTERVAL)
                return
            except queue.Full:
                continue

    def get(self):
        """Block for the next item. Raises ChannelClosed once closed and empty."""
        while True:
            if self._cancelled.is_set():
                raise ChannelClosed()
            # Read the flag before waiting: every put happened before close(),
            # so an empty queue after a close we already saw means drained.
            closed = self._closed.is_set()
            try:
                return self._queue.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if closed:
                    raise ChannelClosed() from None

    def close(self) -> None:
        self._closed.set()

    def cancel(self) -> None:
        self._cancelled.set()

    def __iter__(self) -> Iterator:
        while True:
            try:
                yield self.get()
            except ChannelClosed:
                return


class PendingCounter:
    """Count of outstanding tasks with a wait-for-zero."""

    def __init__(self) -> None:
        self._count = 0
        self._cond = threading.Condition()

    @property
    def value(self) -> int:
        with self._cond:
            return self._count

    def add(self, n: int = 1) -> None:
        with self._cond:
            self._count += n

    def done(self) -> None:
        with self._cond:
            if self._count <= 0:
                raise ValueError("PendingCounter.done() called more times than add()")
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the count is zero. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)


@dataclass
class SkippedPath:
    path: str
    reason: str


class Walker:
    """Recursive, concurrent directory walk feeding one Channel.

    A subdirectory whose base name matches ``pattern`` and which is a
    repository root is emitted and not descended into. Every other
    subdirectory is scanned in its own pool task.
    """

    def __init__(
        self,
        root: str | os.PathLike,
        pattern: re.Pattern,
        *,
        workers: int = 8,
        exclude: Iterable[str] = DEFAULT_EXCLUDE,
        skip_paths: Iterable[str | os.PathLike] = (),
        fail_fast: bool = False,
    ) -> None:
        self.root = os.path.abspath(os.path.expanduser(os.fspath(root)))
        self.pattern = pattern
        self.workers = workers
        self.exclude = frozenset(exclude)
        self.skip_paths = frozenset(os.path.abspath(os.fspath(p)) for p in skip_paths)
        self.fail_fast = fail_fast
        self.pending = PendingCounter()
        self.skipped: list[SkippedPath] = []
        self.discovered = 0
        self.error: Optional[BaseException] = None
        self._lock = threading.Lock()
        self._pool: Optional[ThreadPoolExecutor] = None

    def run(self, channel: Channel) -> None:
        """Walk the whole tree, then close channel.

        The channel is closed only after every directory task has
        finished. If a task died unexpectedly the channel is cancelled
        instead and the error re-raised here.
        """
        logger.info("Scanning %s", self.root)
        try:
            with ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="walk"
            ) as pool:
                self._pool = pool
                self.pending.add()
                pool.submit(self._scan, self.root, channel)
                self.pending.wait()
        finally:
            self._pool = None
            if self.error is not None:
                channel.cancel()
            else:
                channel.close()
        if self.error is not None:
            raise self.error
        logger.info(
            "Scan finished: %d repos, %d skipped subtrees",
            self.discovered, len(self.skipped),
        )

    def _subdirs(self, path: str) -> list[os.DirEntry]:
        subdirs: list[os.DirEntry] = []
        with os.scandir(path) as it:
            for entry in it:
                if entry.name in self.exclude or entry.path in self.skip_paths:
                    continue
                try:
                    if entry.is_dir(follow_symlinks=False):
                        subdirs.append(entry)
                except OSError:
                    continue
        return subdirs

    def _scan(self, path: str, channel: Channel) -> None:
        try:
            if channel.cancelled:
                return
            try:
                subdirs = self._subdirs(path)
            except OSError as exc:
                self._skip(path, exc, channel)
                return

            for entry in subdirs:
                if channel.cancelled:
                    return
                if self.pattern.search(entry.name) and is_repository(entry.path):
                    logger.debug("Discovered %s", entry.path)
                    channel.put(entry.path)
                    with self._lock:
                        self.discovered += 1
                else:
                    self.pending.add()
                    try:
                        self._pool.submit(self._scan, entry.path, channel)
                    except BaseException:
                        self.pending.done()
                        raise
        except ChannelClosed:
            pass
        except BaseException as exc:
            logger.exception("Scan of %s failed", path)
            with self._lock:
                if self.error is None:
                    self.error = exc
            channel.cancel()
        finally:
            self.pending.done()

    def _skip(self, path: str, exc: OSError, channel: Channel) -> None:
        reason = exc.strerror or str(exc)
        with self._lock:
            self.skipped.append(SkippedPath(path=path, reason=reason))
        if self.fail_fast:
            logger.error("Cannot read %s: %s", path, reason)
            channel.cancel()
        else:
            logger.warning("Skipping unreadable directory %s: %s", path, reason)


def discover(
    root: str | os.PathLike,
    pattern: re.Pattern | str,
    *,
    workers: int = 8,
    channel_size: int = 100,
    exclude: Iterable[str] = DEFAULT_EXCLUDE,
    fail_fast: bool = False,
) -> Iterator[str]:
    """Lazily yield repository paths under root whose folder name matches pattern.

    Order follows the walk, not the filesystem. Leaving the loop early
    stops the walk. With fail_fast, an unreadable directory raises
    DiscoveryError once the stream ends.
    """
    if isinstance(pattern, str):
        pattern = re.compile(pattern)
    channel = Channel(channel_size)
    walker = Walker(root, pattern, workers=workers, exclude=exclude, fail_fast=fail_fast)
    failure: list[BaseException] = []

    def _run() -> None:
        try:
            walker.run(channel)
        except BaseException as exc:
            failure.append(exc)

    thread = threading.Thread(target=_run, name="walker", daemon=True)
    thread.start()
    try:
        yield from channel
    finally:
        channel.cancel()
        thread.join()

    if failure:
        raise failure[0]
    if fail_fast and walker.skipped:
        first = walker.skipped[0]
        raise DiscoveryError(
            f"cannot read {first.path}: {first.reason}",
            details={"path": first.path},
        )


def find_repos(root: str | os.PathLike, pattern: re.Pattern | str = ".", **kwargs) -> list[str]:
    """Find every matching repository under root. Returns a sorted list of paths."""
    return sorted(discover(root, pattern, **kwargs))
