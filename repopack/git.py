"""Git operations — thin subprocess wrappers around the git executable."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from repopack.errors import GitError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300

# Never block on a credential prompt from inside a worker thread.
_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


@dataclass
class Remote:
    name: str
    urls: list[str] = field(default_factory=list)

    @property
    def url(self) -> str:
        return self.urls[0] if self.urls else ""


def _run_git(repo_path: str | Path, args: list[str], timeout: int = 60) -> str:
    """Run a git command in repo_path and return stdout.

    Raises GitError on a non-zero exit, a timeout, or a missing git binary.
    """
    cmd = ["git", "-C", str(repo_path)] + args
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            errors="replace",
            env={**os.environ, **_GIT_ENV},
        )
    except subprocess.TimeoutExpired:
        raise GitError(f"git {args[0]} timed out after {timeout}s", command=cmd) from None
    except (FileNotFoundError, OSError) as exc:
        raise GitError(f"could not run git: {exc}", command=cmd) from exc

    if result.returncode != 0:
        stderr = result.stderr.strip()
        raise GitError(
            f"git {args[0]} failed in {repo_path}: {stderr or 'exit ' + str(result.returncode)}",
            command=cmd,
            returncode=result.returncode,
            stderr=stderr,
        )
    return result.stdout


def is_repository(path: str | Path) -> bool:
    """Return True if path is the root of a git working copy.

    A directory nested inside some other repository is not a root.
    """
    if not os.path.isdir(path):
        return False
    try:
        toplevel = _run_git(path, ["rev-parse", "--show-toplevel"], timeout=30).strip()
    except GitError:
        return False
    if not toplevel:
        return False
    return os.path.realpath(toplevel) == os.path.realpath(path)


def current_branch(repo_path: str | Path) -> str:
    """Short name of the branch HEAD points to. Detached HEAD raises GitError."""
    try:
        ref = _run_git(repo_path, ["symbolic-ref", "-q", "HEAD"], timeout=30).strip()
    except GitError as exc:
        if exc.returncode == 1:
            raise GitError(
                f"HEAD is detached in {repo_path}; no branch to clone",
                command=exc.command,
                returncode=exc.returncode,
            ) from None
        raise
    return ref.removeprefix("refs/heads/")


def list_remote_names(repo_path: str | Path) -> list[str]:
    out = _run_git(repo_path, ["remote"], timeout=30)
    return [line.strip() for line in out.split("\n") if line.strip()]


def list_remotes(repo_path: str | Path) -> list[Remote]:
    """All remotes with every configured fetch URL, in config order."""
    remotes: list[Remote] = []
    for name in list_remote_names(repo_path):
        try:
            out = _run_git(repo_path, ["config", "--get-all", f"remote.{name}.url"], timeout=30)
        except GitError as exc:
            # exit 1 means the remote has no url key at all
            if exc.returncode != 1:
                raise
            out = ""
        urls = [line.strip() for line in out.split("\n") if line.strip()]
        remotes.append(Remote(name=name, urls=urls))
    return remotes


def clone_branch(
    source: str | Path,
    destination: str | Path,
    branch: str,
    depth: int = 1,
    timeout: int = DEFAULT_TIMEOUT,
) -> None:
    """Clone only `branch` of the local repository at source into destination."""
    source = Path(source).resolve()
    args = ["clone", "--single-branch", "--branch", branch, "--no-tags"]
    if depth > 0:
        # Local path clones ignore --depth; a file:// URL goes through the transport.
        args.extend(["--depth", str(depth)])
        url = source.as_uri()
    else:
        url = str(source)
    # git runs from the parent dir, so a relative destination must not be reused as is
    destination = Path(destination).resolve()
    args.extend([url, str(destination)])

    logger.debug("git %s", " ".join(args))
    _run_git(destination.parent, args, timeout=timeout)


def remove_remote(repo_path: str | Path, name: str) -> None:
    _run_git(repo_path, ["remote", "remove", name], timeout=30)


def add_remote(repo_path: str | Path, remote: Remote) -> None:
    """Create remote with the same name and URL(s)."""
    if not remote.urls:
        # A remote section without a url; keep the name so the sets still match.
        _run_git(repo_path, ["config", f"remote.{remote.name}.fetch",
                             f"+refs/heads/*:refs/remotes/{remote.name}/*"], timeout=30)
        return
    _run_git(repo_path, ["remote", "add", remote.name, remote.urls[0]], timeout=30)
    for extra in remote.urls[1:]:
        _run_git(repo_path, ["config", "--add", f"remote.{remote.name}.url", extra], timeout=30)


def mirror_remotes(source: str | Path, destination: str | Path) -> list[Remote]:
    """Make destination's remote set equal to source's, by name and URL.

    Every remote the clone created is removed first.
    """
    for name in list_remote_names(destination):
        remove_remote(destination, name)

    remotes = list_remotes(source)
    for remote in remotes:
        add_remote(destination, remote)
    return remotes
