"""Exception hierarchy for repopack.

Every failure the user can see is a SyncError; the stage tag says which
part of the run raised it.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for all repopack failures."""

    def __init__(self, message: str, stage: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.stage = stage
        self.details = details or {}

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.stage:
            return f"[{self.stage}] {base_msg}"
        return base_msg


class ConfigError(SyncError):
    """Raised for a bad pattern, bad option or unusable temp location."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, stage="Config", details=details)


class DiscoveryError(SyncError):
    """Raised when the directory walk cannot complete."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, stage="Discovery", details=details)


class GitError(SyncError):
    """Raised when a git command fails, times out or cannot be started."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ):
        super().__init__(
            message,
            stage="Git",
            details={"command": command, "returncode": returncode, "stderr": stderr},
        )
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class CloneError(SyncError):
    """Raised when a repository could not be cloned into the staging tree."""

    def __init__(self, message: str, source: str | None = None, details: dict | None = None):
        super().__init__(message, stage="Clone", details=details)
        self.source = source


class PackagingError(SyncError):
    """Raised when aux files cannot be staged or the archive cannot be written."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, stage="Packaging", details=details)


class ArchiveExistsError(PackagingError):
    """Raised when the archive path is already taken; nothing was written."""


class ChannelClosed(Exception):
    """Raised by Channel when it is closed and drained, or cancelled."""
