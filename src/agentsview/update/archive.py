"""
Release archive extraction.

Release assets are gzip-compressed tarballs holding regular files and
directories. The archive is streamed (``r|gz``) entry by entry; each entry
path is checked by sanitize_path before anything is written, and link or
device entries are never materialized.

Extraction aborts on the first unsafe entry or I/O error. Files already
written are left in place; callers extract into a scratch directory and
discard it on failure.
"""

from __future__ import annotations

import os
import shutil
import tarfile
from pathlib import Path

from agentsview.errors import FailedPreconditionError, UpdateIOError
from agentsview.logging import get_logger
from agentsview.update.paths import sanitize_path

logger = get_logger(__name__)


def extract_tar_gz(archive_path: Path | str, dest_dir: Path | str) -> list[Path]:
    """
    Extract a ``.tar.gz`` archive into ``dest_dir``.

    Args:
        archive_path: Path of the downloaded archive.
        dest_dir: Directory to extract into (created if missing).

    Returns:
        Paths of the regular files written, in archive order.

    Raises:
        UnsafePathError: If any entry would land outside ``dest_dir``.
        UpdateIOError: If the archive is unreadable or a write fails.
    """
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir)
    written: list[Path] = []

    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        with archive_path.open("rb") as raw, tarfile.open(
            fileobj=raw, mode="r|gz"
        ) as tar:
            for member in tar:
                target = sanitize_path(dest_dir, member.name)

                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isfile():
                    _write_member(tar, member, target)
                    written.append(target)
                else:
                    logger.warning(
                        "Skipping unsupported archive entry",
                        extra={"entry": member.name, "type": member.type.decode()},
                    )
    except (OSError, tarfile.TarError) as e:
        raise UpdateIOError(
            f"Failed to extract {archive_path.name}: {e}",
            details={
                "archive": str(archive_path),
                "dest_dir": str(dest_dir),
                "error": str(e),
            },
        ) from e

    logger.info(
        "Archive extracted",
        extra={"archive": str(archive_path), "files": len(written)},
    )
    return written


def _write_member(tar: tarfile.TarFile, member: tarfile.TarInfo, target: Path) -> None:
    """Write a regular-file entry to ``target`` with its permission bits."""
    source = tar.extractfile(member)
    if source is None:
        raise tarfile.ReadError(f"Cannot read archive entry: {member.name}")

    target.parent.mkdir(parents=True, exist_ok=True)
    with source, target.open("wb") as out:
        shutil.copyfileobj(source, out)
    os.chmod(target, member.mode & 0o777)


def find_binary(root: Path, name: str) -> Path:
    """
    Locate the executable ``name`` inside an extracted archive.

    The top level is checked first, then the whole tree.

    Raises:
        FailedPreconditionError: If no regular file called ``name`` exists.
    """
    candidate = root / name
    if candidate.is_file():
        return candidate

    for path in sorted(root.rglob(name)):
        if path.is_file() and not path.is_symlink():
            return path

    raise FailedPreconditionError(
        f"Release archive does not contain {name}",
        details={"root": str(root), "binary": name},
    )
