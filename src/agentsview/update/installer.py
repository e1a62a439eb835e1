"""
In-place replacement of the agentsview binary.

CRITICAL: the destination must never be left missing or truncated. The
install sequence is:
1. Stage a full copy of the new binary next to the destination (<dst>.new)
2. Rename the current binary to <dst>.old (backup)
3. Atomically rename the staged copy onto <dst>
4. Delete the backup

If step 3 fails or is interrupted the backup is renamed back. If that also fails, the error
names the backup file, since that is where the working binary now lives.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import stat
import sys
from collections.abc import Iterator
from pathlib import Path

from agentsview.errors import (
    FailedPreconditionError,
    InstallError,
    InvalidArgumentError,
)
from agentsview.logging import get_logger
from agentsview.update.releases import binary_name_for

logger = get_logger(__name__)

BACKUP_SUFFIX = ".old"
STAGING_SUFFIX = ".new"


def backup_path_for(dst: Path) -> Path:
    """Return the backup location used for ``dst``."""
    return dst.with_name(dst.name + BACKUP_SUFFIX)


@contextlib.contextmanager
def binary_backup(dst: Path) -> Iterator[Path | None]:
    """
    Hold a backup of ``dst`` for the duration of the block.

    On entry an existing ``dst`` is renamed to ``<dst>.old``; the backup path
    (or None when there was nothing to back up) is yielded. If the block
    raises, the backup is restored and InstallError is raised; interrupts such
    as KeyboardInterrupt are re-raised unchanged once the backup is back in
    place. If the block succeeds, the backup is deleted.

    Raises:
        InstallError: If the backup cannot be created, or the block failed.
    """
    backup = backup_path_for(dst)

    if dst.exists():
        try:
            os.replace(dst, backup)
        except OSError as e:
            raise InstallError(
                f"Failed to back up {dst}: {e}",
                details={
                    "path": str(dst),
                    "backup_path": str(backup),
                    "error": str(e),
                },
            ) from e
        logger.debug(
            "Backed up binary", extra={"path": str(dst), "backup": str(backup)}
        )
    else:
        backup = None

    try:
        yield backup
    except BaseException as e:
        if backup is not None:
            _restore_backup(backup, dst, e)
        if not isinstance(e, Exception):
            raise
        if backup is None:
            raise InstallError(
                f"Failed to install {dst}: {e}",
                details={"path": str(dst), "error": str(e)},
            ) from e
        raise InstallError(
            f"Failed to install {dst}: {e}. The previous binary was restored",
            details={
                "path": str(dst),
                "backup_path": str(backup),
                "error": str(e),
            },
        ) from e

    if backup is not None:
        try:
            backup.unlink()
        except OSError as e:
            # A running Windows executable cannot be deleted; the next
            # install overwrites the leftover backup.
            logger.warning(
                "Could not remove backup binary",
                extra={"backup": str(backup), "error": str(e)},
            )


def _restore_backup(backup: Path, dst: Path, cause: BaseException) -> None:
    """
    Move ``backup`` back onto ``dst`` after a failed install.

    Raises:
        InstallError: If the restore itself fails. The message names the
            backup file, which then holds the only working binary.
    """
    cause_text = str(cause) or type(cause).__name__
    try:
        os.replace(backup, dst)
    except OSError as restore_error:
        logger.error(
            "Restoring backup failed",
            extra={
                "path": str(dst),
                "backup": str(backup),
                "error": str(restore_error),
            },
        )
        raise InstallError(
            f"Failed to install {dst}: {cause_text}; restoring the previous binary "
            f"also failed: {restore_error}. The previous binary is at {backup}",
            details={
                "path": str(dst),
                "backup_path": str(backup),
                "error": cause_text,
                "restore_error": str(restore_error),
            },
        ) from cause

    logger.warning(
        "Install failed, previous binary restored",
        extra={"path": str(dst), "error": cause_text},
    )


def _stage_copy(src: Path, staged: Path) -> None:
    """Copy ``src`` to ``staged`` with its mode bits plus rwxr-xr-x."""
    shutil.copyfile(src, staged)
    mode = stat.S_IMODE(src.stat().st_mode) | 0o755
    os.chmod(staged, mode)


def install_binary_to(src: Path | str, dst: Path | str) -> None:
    """
    Replace the binary at ``dst`` with ``src``.

    The copy is staged fully before the current binary is touched, so a
    failed copy leaves ``dst`` as it was. Repeating the call with the same
    source yields the same ``dst`` content and leaves no ``.old`` file.

    Args:
        src: Freshly extracted binary.
        dst: Location of the binary to replace (may not exist yet).

    Raises:
        InstallError: If staging or replacement fails. When restoring the
            backup also fails, ``details["restore_error"]`` is set.
    """
    src = Path(src)
    dst = Path(dst)
    staged = dst.with_name(dst.name + STAGING_SUFFIX)

    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        _stage_copy(src, staged)
    except OSError as e:
        with contextlib.suppress(OSError):
            staged.unlink()
        raise InstallError(
            f"Failed to stage new binary for {dst}: {e}",
            details={"source": str(src), "path": str(dst), "error": str(e)},
        ) from e

    try:
        with binary_backup(dst):
            os.replace(staged, dst)
    finally:
        with contextlib.suppress(OSError):
            staged.unlink()

    logger.info("Binary installed", extra={"source": str(src), "path": str(dst)})


def resolve_executable_path(configured: str | Path | None = None) -> Path:
    """
    Return the path of the binary that an update should replace.

    The updater itself runs under Python, so neither ``sys.argv[0]`` nor
    ``sys.executable`` names the agentsview binary unless this is a frozen
    build. Otherwise the binary is looked up on PATH.

    Args:
        configured: Explicit install path from configuration, if any.

    Returns:
        The configured path, the frozen executable, or the agentsview binary
        found on PATH.

    Raises:
        InvalidArgumentError: If the configured path is a directory.
        FailedPreconditionError: If no binary can be located.
    """
    if configured:
        path = Path(configured).expanduser().resolve()
        if path.is_dir():
            raise InvalidArgumentError(
                f"Install path {path} is a directory; expected the binary itself",
                details={"install_path": str(path)},
            )
        return path

    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve()

    name = binary_name_for()
    located = shutil.which(name)
    if located is None:
        raise FailedPreconditionError(
            f"Cannot find {name} on PATH; set updates.install_path "
            "(or AGENTSVIEW_UPDATES__INSTALL_PATH) to the binary to update",
            details={"binary": name},
        )
    return Path(located).resolve()
