"""
Checksum manifest parsing and artifact verification.

Release checksum manifests are plain text in ``sha256sum`` output format,
one ``<hex-digest><whitespace><filename>`` record per line.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path

from agentsview.errors import IntegrityError, UpdateIOError
from agentsview.logging import get_logger

logger = get_logger(__name__)

_CHUNK_SIZE = 65536


@dataclass(frozen=True)
class ChecksumEntry:
    """A single manifest record."""

    digest: str
    filename: str


@dataclass(frozen=True)
class ChecksumManifest:
    """
    A parsed checksum manifest.

    Entries keep manifest order so that lookups return the first match.
    """

    entries: tuple[ChecksumEntry, ...] = field(default_factory=tuple)

    @classmethod
    def parse(cls, text: str) -> ChecksumManifest:
        """
        Parse manifest text.

        Each line is split on its first run of whitespace into digest and
        filename. Blank lines and lines without a filename are skipped;
        ``\\r\\n`` line endings are tolerated.
        """
        entries: list[ChecksumEntry] = []
        for line in text.splitlines():
            parts = line.strip().split(None, 1)
            if len(parts) != 2:
                continue
            entries.append(ChecksumEntry(digest=parts[0], filename=parts[1].strip()))
        return cls(entries=tuple(entries))

    def lookup(self, filename: str) -> str:
        """Return the digest recorded for ``filename``, or "" if absent."""
        for entry in self.entries:
            if entry.filename == filename:
                return entry.digest
        return ""


def extract_checksum(manifest_text: str, filename: str) -> str:
    """
    Look up the digest for ``filename`` in a checksum manifest.

    Returns:
        The digest of the first line whose filename matches exactly, or an
        empty string when no line matches.
    """
    return ChecksumManifest.parse(manifest_text).lookup(filename)


def calculate_sha256(path: Path) -> str:
    """Return the hex SHA-256 digest of the file at ``path``."""
    digest = hashlib.sha256()
    try:
        with path.open("rb") as source:
            for chunk in iter(lambda: source.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as e:
        raise UpdateIOError(
            f"Failed to read {path} for hashing: {e}",
            details={"path": str(path), "error": str(e)},
        ) from e
    return digest.hexdigest()


def verify_checksum(path: Path, expected: str) -> str:
    """
    Verify that the SHA-256 of ``path`` equals ``expected``.

    The comparison is case-insensitive.

    Returns:
        The actual digest.

    Raises:
        IntegrityError: If ``expected`` is empty or does not match.
    """
    if not expected:
        raise IntegrityError(
            f"No checksum available for {path.name}",
            details={"path": str(path)},
        )

    actual = calculate_sha256(path)
    if actual.lower() != expected.strip().lower():
        raise IntegrityError(
            f"Checksum mismatch for {path.name}",
            details={"path": str(path), "expected": expected, "actual": actual},
        )

    logger.debug("Checksum verified", extra={"path": str(path), "sha256": actual})
    return actual
