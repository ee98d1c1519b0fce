"""Packaging — stage auxiliary files and zip the staging tree."""

from __future__ import annotations

import logging
import os
import shutil
import zipfile
from pathlib import Path
from typing import Iterable

from repopack.errors import ArchiveExistsError, PackagingError

logger = logging.getLogger(__name__)


def copy_aux_files(paths: Iterable[str | os.PathLike], staging_dir: str | os.PathLike) -> list[Path]:
    """Copy each file into the staging root, keeping its permission bits.

    A name already present in the staging root (a clone or an earlier aux
    file) is an error, never a merge or an overwrite.
    """
    staging_dir = Path(staging_dir)
    copied: list[Path] = []
    for path in paths:
        path = Path(path)
        target = staging_dir / path.name
        if os.path.lexists(target):
            raise PackagingError(
                f"cannot stage {path}: {path.name} is already in the archive root",
                details={"path": str(path)},
            )
        try:
            shutil.copy(path, target)
        except OSError as exc:
            raise PackagingError(
                f"cannot copy {path} into staging: {exc}",
                details={"path": str(path)},
            ) from exc
        logger.info("Staged %s", path)
        copied.append(target)
    return copied


def _write_symlink(zf: zipfile.ZipFile, path: str, arcname: str) -> None:
    """Store a symlink as a link entry instead of following it."""
    info = zipfile.ZipInfo(arcname)
    info.create_system = 3  # unix, so external_attr carries the mode
    info.external_attr = (os.lstat(path).st_mode & 0xFFFF) << 16
    zf.writestr(info, os.readlink(path))


def create_archive(staging_dir: str | os.PathLike, archive_path: str | os.PathLike) -> Path:
    """Zip the whole staging tree into archive_path, paths relative to staging_dir.

    Empty directories get their own entries and symlinks are stored as
    links, so the tree unpacks the way it was staged. An existing file at
    archive_path is never replaced: ArchiveExistsError is raised instead.
    A partially written archive is removed on failure.
    """
    staging_dir = Path(staging_dir)
    archive_path = Path(archive_path).resolve()
    count = 0

    try:
        zf = zipfile.ZipFile(archive_path, "x", compression=zipfile.ZIP_DEFLATED)
    except FileExistsError as exc:
        raise ArchiveExistsError(
            f"archive {archive_path} already exists",
            details={"archive": str(archive_path)},
        ) from exc
    except OSError as exc:
        raise PackagingError(
            f"cannot write archive {archive_path}: {exc}",
            details={"archive": str(archive_path)},
        ) from exc

    try:
        with zf:
            for dirpath, dirnames, filenames in os.walk(staging_dir):
                rel_dir = Path(dirpath).relative_to(staging_dir)
                links = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
                dirnames[:] = sorted(d for d in dirnames if d not in links)
                if rel_dir.parts and not dirnames and not filenames and not links:
                    zf.write(dirpath, rel_dir.as_posix() + "/")
                for name in sorted(filenames + links):
                    full = os.path.join(dirpath, name)
                    arcname = (rel_dir / name).as_posix()
                    if os.path.islink(full):
                        _write_symlink(zf, full, arcname)
                    else:
                        zf.write(full, arcname)
                    count += 1
    except OSError as exc:
        archive_path.unlink(missing_ok=True)
        raise PackagingError(
            f"cannot write archive {archive_path}: {exc}",
            details={"archive": str(archive_path)},
        ) from exc

    logger.info("Wrote %d entries to %s", count, archive_path)
    return archive_path
