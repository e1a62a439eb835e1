"""
Error types for the agentsview self-update subsystem.

This module defines the UpdateError base class and the subclasses used by the
update pipeline. Lower layers (version parsing, checksum lookup, path
sanitizing, extraction, install, cache) raise these errors and never print;
the command-line entry point is the only place that turns them into
user-facing messages and a non-zero exit status.
"""

from __future__ import annotations

from typing import Any


class UpdateError(Exception):
    """
    Base exception class for self-update errors.

    Attributes:
        error_code: Internal error code string (e.g., "unsafe_path",
            "integrity", "io_error", "install_failed").
        message: Human-readable error message.
        details: Optional structured details (e.g., paths, digests).

    Example:
        >>> raise UpdateError(
        ...     error_code="integrity",
        ...     message="Checksum mismatch for agentsview_0.2.0_linux_amd64.tar.gz",
        ...     details={"expected": "abc...", "actual": "def..."},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdateError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(UpdateError):
    """Error raised for invalid configuration values or caller input."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class UnsafePathError(UpdateError):
    """
    Error raised when an archive entry would be written outside its destination.

    Extraction must abort on this error; unsafe entries are never skipped.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnsafePathError."""
        super().__init__(error_code="unsafe_path", message=message, details=details)


class IntegrityError(UpdateError):
    """
    Error raised when a downloaded artifact fails checksum verification.

    The update is aborted before anything is installed.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an IntegrityError."""
        super().__init__(error_code="integrity", message=message, details=details)


class UpdateIOError(UpdateError):
    """Error raised for filesystem failures during download, extraction or install."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UpdateIOError."""
        super().__init__(error_code="io_error", message=message, details=details)


class UnavailableError(UpdateError):
    """
    Error raised when the release server cannot be reached.

    Covers transport failures and non-success HTTP responses.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class FailedPreconditionError(UpdateError):
    """
    Error raised when a precondition for the update is not met.

    Examples: no release asset for this platform, binary missing from the
    extracted archive.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FailedPreconditionError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class InstallError(UpdateError):
    """
    Error raised when replacing the running binary fails.

    When restoring the backup also failed, ``details["restore_error"]`` is set
    and the message names the backup file holding the previous binary.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InstallError."""
        super().__init__(
            error_code="install_failed", message=message, details=details
        )


class CacheMissError(UpdateError):
    """Error raised when no update-check cache exists. Non-fatal to callers."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a CacheMissError."""
        super().__init__(error_code="cache_miss", message=message, details=details)


class CacheCorruptError(UpdateError):
    """Error raised when the update-check cache is unreadable. Non-fatal to callers."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a CacheCorruptError."""
        super().__init__(
            error_code="cache_corrupt", message=message, details=details
        )
