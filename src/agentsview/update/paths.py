"""
Archive entry path validation.

Every entry read from a release archive is resolved through sanitize_path
before anything is written, so that a crafted entry such as
``foo/../../etc/passwd`` cannot escape the extraction directory.
"""

from __future__ import annotations

import ntpath
import os
from pathlib import Path

from agentsview.errors import UnsafePathError


def _is_absolute_entry(entry_path: str) -> bool:
    """True for POSIX-absolute, Windows-absolute or drive-qualified entries."""
    if entry_path.startswith(("/", "\\")):
        return True
    if os.path.isabs(entry_path):
        return True
    drive, _ = ntpath.splitdrive(entry_path)
    return bool(drive)


def sanitize_path(dest_dir: Path | str, entry_path: str) -> Path:
    """
    Resolve an archive entry path under ``dest_dir``.

    The entry is joined onto ``dest_dir`` and lexically cleaned. The result
    must be ``dest_dir`` itself or lie strictly beneath it; the prefix check
    includes a separator so ``/dest`` does not accept ``/destination``.
    Nothing is created on disk.

    Args:
        dest_dir: Extraction directory.
        entry_path: Relative path recorded in the archive.

    Returns:
        The absolute destination path for the entry.

    Raises:
        UnsafePathError: If the entry is absolute or escapes ``dest_dir``.
    """
    if _is_absolute_entry(entry_path):
        raise UnsafePathError(
            f"Archive entry has an absolute path: {entry_path}",
            details={"entry": entry_path, "dest_dir": str(dest_dir)},
        )

    base = os.path.normpath(os.path.abspath(dest_dir))
    target = os.path.normpath(os.path.join(base, entry_path))

    if target != base and not target.startswith(base.rstrip(os.sep) + os.sep):
        raise UnsafePathError(
            f"Archive entry escapes the destination directory: {entry_path}",
            details={"entry": entry_path, "dest_dir": base, "resolved": target},
        )

    return Path(target)
