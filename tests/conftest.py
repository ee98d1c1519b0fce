"""Shared fixtures: real git repositories built with the git CLI."""

import os
import subprocess

import pytest

_GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test User",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test User",
    "GIT_COMMITTER_EMAIL": "test@test.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def git(path: str, *args: str) -> str:
    result = subprocess.run(
        ["git", "-C", path, *args],
        capture_output=True,
        text=True,
        env=_GIT_ENV,
        check=True,
    )
    return result.stdout


def _create_test_repo(path: str, branch: str = "main", remotes: dict | None = None) -> str:
    """Create a git repo at path with one commit on `branch` and the given remotes."""
    os.makedirs(path, exist_ok=True)
    subprocess.run(["git", "init", path], capture_output=True, env=_GIT_ENV, check=True)
    git(path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
    git(path, "config", "commit.gpgsign", "false")

    with open(os.path.join(path, "README.md"), "w") as f:
        f.write(f"# {os.path.basename(path)}\n")
    git(path, "add", ".")
    git(path, "commit", "-m", "Initial commit")

    for name, url in (remotes or {}).items():
        git(path, "remote", "add", name, url)
    return path


@pytest.fixture
def make_repo():
    return _create_test_repo
