"""
Persistence of the last update check.

The latest version seen on the release server is stored as a small JSON
record in the agentsview data directory, so that repeated invocations do not
hit the network every time. The cache is advisory: a missing or unreadable
record only means "check the server".
"""

from __future__ import annotations

import contextlib
import os
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from agentsview.errors import CacheCorruptError, CacheMissError
from agentsview.logging import get_logger

logger = get_logger(__name__)

CACHE_FILENAME = "update-check.json"


class CacheRecord(BaseModel):
    """
    Result of the most recent remote update check.

    Attributes:
        version: Latest version reported by the release server.
        checked_at: When the check happened (UTC).
    """

    version: str = Field(
        ...,
        description="Latest version reported by the release server",
    )
    checked_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp of the remote check",
    )


def cache_file(cache_dir: Path | str) -> Path:
    """Return the cache file location inside ``cache_dir``."""
    return Path(cache_dir) / CACHE_FILENAME


def save_cache(version: str, cache_dir: Path | str) -> None:
    """
    Record ``version`` as the latest known release.

    Uses atomic write (write to temp, fsync, then rename). Failures are
    logged and otherwise ignored, since a missing cache only costs an extra
    remote check.
    """
    path = cache_file(cache_dir)
    record = CacheRecord(version=version)
    temp_path = path.with_suffix(".tmp")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(record.model_dump_json())
            f.flush()
            os.fsync(f.fileno())
        temp_path.replace(path)
    except OSError as e:
        with contextlib.suppress(OSError):
            temp_path.unlink()
        logger.warning(
            "Failed to write update cache",
            extra={"path": str(path), "error": str(e)},
        )
        return

    logger.debug("Saved update cache", extra={"path": str(path), "version": version})


def load_cache(cache_dir: Path | str) -> CacheRecord:
    """
    Load the last update check.

    Raises:
        CacheMissError: If no cache file exists.
        CacheCorruptError: If the file cannot be read or parsed.
    """
    path = cache_file(cache_dir)

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise CacheMissError(
            "No update check cached",
            details={"path": str(path)},
        ) from e
    except (OSError, UnicodeDecodeError) as e:
        raise CacheCorruptError(
            f"Cannot read update cache: {e}",
            details={"path": str(path), "error": str(e)},
        ) from e

    try:
        return CacheRecord.model_validate_json(raw)
    except ValidationError as e:
        raise CacheCorruptError(
            "Update cache is corrupt",
            details={"path": str(path), "error": str(e)},
        ) from e


def is_cache_fresh(
    record: CacheRecord,
    max_age_seconds: float,
    now: datetime | None = None,
) -> bool:
    """
    Return True if ``record`` is younger than ``max_age_seconds``.

    A record timestamped in the future (clock skew) is treated as stale.
    """
    if max_age_seconds <= 0:
        return False
    now = now or datetime.now(UTC)
    checked_at = record.checked_at
    if checked_at.tzinfo is None:
        checked_at = checked_at.replace(tzinfo=UTC)
    age = (now - checked_at).total_seconds()
    return 0 <= age < max_age_seconds
