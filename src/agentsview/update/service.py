"""
Update orchestration for agentsview.

UpdateService runs the whole self-update sequence, one step at a time:

    load cache -> resolve latest release -> compare versions
        -> download asset + checksum manifest -> verify digest
        -> extract into scratch dir -> install -> save cache -> report

Steps run strictly in order with no internal concurrency. Every step either
completes or raises; the installed binary is only touched by the install
step, which restores the previous binary on failure. The scratch directory
is removed on every exit path.
"""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from agentsview.errors import CacheCorruptError, CacheMissError, IntegrityError
from agentsview.logging import get_logger
from agentsview.update.archive import extract_tar_gz, find_binary
from agentsview.update.cache import (
    CacheRecord,
    is_cache_fresh,
    load_cache,
    save_cache,
)
from agentsview.update.checksum import extract_checksum, verify_checksum
from agentsview.update.installer import install_binary_to, resolve_executable_path
from agentsview.update.releases import (
    GitHubReleaseResolver,
    HttpFetcher,
    ReleaseFetcher,
    ReleaseInfo,
    ReleaseResolver,
    binary_name_for,
)
from agentsview.update.version import is_dev_build_version, is_newer, normalize_semver

if TYPE_CHECKING:
    from agentsview.config import AppConfig

logger = get_logger(__name__)

Reporter = Callable[[str], None]

_SIZE_UNITS = ("KB", "MB", "GB", "TB")


def format_size(num_bytes: int) -> str:
    """
    Render a byte count for humans.

    Below 1024 the count is shown as ``"<n> B"``; otherwise it is divided by
    1024 until it fits and shown with one decimal place.

    Examples:
        >>> format_size(500)
        '500 B'
        >>> format_size(1536)
        '1.5 KB'
        >>> format_size(10485760)
        '10.0 MB'
    """
    if num_bytes < 1024:
        return f"{num_bytes} B"

    value = float(num_bytes)
    unit = _SIZE_UNITS[0]
    for unit in _SIZE_UNITS:
        value /= 1024
        if value < 1024:
            break
    return f"{value:.1f} {unit}"


def _no_report(message: str) -> None:
    pass


class UpdateCheck(BaseModel):
    """
    Outcome of an update check.

    Attributes:
        current_version: Version of the running binary.
        latest_version: Latest known release, if any was determined.
        update_available: Whether latest_version is newer than current.
        from_cache: Whether the answer came from the cached check.
        is_dev_build: Whether the running binary is a development build.
    """

    current_version: str
    latest_version: str | None = None
    update_available: bool = False
    from_cache: bool = False
    is_dev_build: bool = False


class UpdateResult(BaseModel):
    """
    Outcome of an update run.

    Attributes:
        status: "updated", "up_to_date" or "skipped_dev_build".
        old_version: Version before the run.
        new_version: Version after the run.
        installed_path: Binary that was replaced, when updated.
        downloaded_bytes: Size of the downloaded archive, when updated.
        message: Human-readable summary.
    """

    status: str = Field(..., description="updated, up_to_date or skipped_dev_build")
    old_version: str
    new_version: str
    installed_path: str | None = None
    downloaded_bytes: int = 0
    message: str = ""


class UpdateService:
    """
    Runs the check -> verify -> install flow for the running binary.

    Attributes:
        current_version: Version of the running binary.
        cache_dir: Directory holding the update-check cache.
        install_path: Binary to replace.
        check_interval_seconds: How long a cached check is trusted.
    """

    def __init__(
        self,
        current_version: str,
        resolver: ReleaseResolver,
        fetcher: ReleaseFetcher,
        cache_dir: Path | str,
        install_path: Path | str,
        check_interval_seconds: float = 3600,
        reporter: Reporter | None = None,
        binary_name: str | None = None,
    ) -> None:
        self.current_version = current_version
        self.cache_dir = Path(cache_dir)
        self.install_path = Path(install_path)
        self.check_interval_seconds = check_interval_seconds
        self._resolver = resolver
        self._fetcher = fetcher
        self._report = reporter or _no_report
        self._binary_name = binary_name or binary_name_for()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        current_version: str,
        reporter: Reporter | None = None,
    ) -> UpdateService:
        """Create an UpdateService talking to GitHub, as configured."""
        updates = config.updates
        return cls(
            current_version=current_version,
            resolver=GitHubReleaseResolver(
                repository=updates.repository,
                api_url=updates.api_url,
                timeout=updates.http_timeout_seconds,
                token=updates.github_token,
            ),
            fetcher=HttpFetcher(
                timeout=updates.http_timeout_seconds,
                max_bytes=updates.max_download_bytes,
            ),
            cache_dir=updates.cache_path,
            install_path=resolve_executable_path(updates.install_path),
            check_interval_seconds=updates.check_interval_seconds,
            reporter=reporter,
        )

    @property
    def is_dev_build(self) -> bool:
        """Whether the running binary is a development build."""
        return is_dev_build_version(self.current_version)

    def _fresh_cache(self) -> CacheRecord | None:
        """Return the cached check if it is still fresh, else None."""
        try:
            record = load_cache(self.cache_dir)
        except (CacheMissError, CacheCorruptError) as e:
            logger.debug(
                "No usable update cache",
                extra={"reason": e.error_code, "cache_dir": str(self.cache_dir)},
            )
            return None

        if not is_cache_fresh(record, self.check_interval_seconds):
            return None
        return record

    async def check_for_update(self, *, force: bool = False) -> UpdateCheck:
        """
        Determine whether a newer release exists.

        Args:
            force: Ignore the cache and dev-build detection.

        Returns:
            UpdateCheck describing the result.

        Raises:
            UnavailableError: If the release server cannot be reached.
            FailedPreconditionError: If no asset exists for this platform.
        """
        if self.is_dev_build and not force:
            return UpdateCheck(current_version=self.current_version, is_dev_build=True)

        if not force:
            record = self._fresh_cache()
            if record is not None:
                return UpdateCheck(
                    current_version=self.current_version,
                    latest_version=record.version,
                    update_available=is_newer(record.version, self.current_version),
                    from_cache=True,
                    is_dev_build=self.is_dev_build,
                )

        release = await self._resolver.latest_release()
        save_cache(release.version, self.cache_dir)

        return UpdateCheck(
            current_version=self.current_version,
            latest_version=release.version,
            update_available=is_newer(release.version, self.current_version),
            is_dev_build=self.is_dev_build,
        )

    async def run_update(self, *, force: bool = False) -> UpdateResult:
        """
        Update the installed binary to the latest release, if newer.

        Args:
            force: Ignore the cache and dev-build detection.

        Returns:
            UpdateResult describing what happened.

        Raises:
            UnavailableError: If a download or the release lookup fails.
            IntegrityError: If the archive does not match its checksum.
            UnsafePathError: If the archive contains an escaping entry.
            FailedPreconditionError: If the archive lacks the binary.
            UpdateIOError: On filesystem errors during download or extract.
            InstallError: If replacing the binary fails.
        """
        current = self.current_version

        if self.is_dev_build and not force:
            message = (
                f"Running a development build ({current or 'unknown'}); "
                "skipping update"
            )
            self._report(message)
            return UpdateResult(
                status="skipped_dev_build",
                old_version=current,
                new_version=current,
                message=message,
            )

        if not force:
            record = self._fresh_cache()
            if record is not None and not is_newer(record.version, current):
                return self._up_to_date(record.version)

        self._report("Checking for updates...")
        release = await self._resolver.latest_release()

        if not is_newer(release.version, current):
            save_cache(release.version, self.cache_dir)
            return self._up_to_date(release.version)

        self._report(
            f"Updating {normalize_semver(current)} -> {normalize_semver(release.version)}"
        )

        scratch = Path(tempfile.mkdtemp(prefix="agentsview-update-"))
        try:
            downloaded = await self._download_verified(release, scratch)
            binary = self._extract(scratch / release.asset_name, scratch / "extracted")

            self._report(f"Installing to {self.install_path}...")
            install_binary_to(binary, self.install_path)
        except Exception as e:
            logger.error(
                "Update failed",
                extra={
                    "version": release.version,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            raise
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        save_cache(release.version, self.cache_dir)

        message = (
            f"Updated agentsview {normalize_semver(current)} -> "
            f"{normalize_semver(release.version)} ({format_size(downloaded)})"
        )
        self._report(message)
        logger.info(
            "Update installed",
            extra={
                "old_version": current,
                "new_version": release.version,
                "path": str(self.install_path),
                "bytes": downloaded,
            },
        )

        return UpdateResult(
            status="updated",
            old_version=current,
            new_version=release.version,
            installed_path=str(self.install_path),
            downloaded_bytes=downloaded,
            message=message,
        )

    def _up_to_date(self, latest: str) -> UpdateResult:
        logger.debug(
            "No newer release",
            extra={"current": self.current_version, "latest": latest},
        )
        message = f"agentsview {normalize_semver(self.current_version)} is up to date"
        self._report(message)
        return UpdateResult(
            status="up_to_date",
            old_version=self.current_version,
            new_version=self.current_version,
            message=message,
        )

    async def _download_verified(self, release: ReleaseInfo, scratch: Path) -> int:
        """Download the asset into ``scratch`` and verify it against the manifest."""
        if not release.checksums_url:
            raise IntegrityError(
                f"Release {release.version} publishes no checksum manifest",
                details={"version": release.version},
            )

        size_hint = (
            f" ({format_size(release.asset_size)})" if release.asset_size else ""
        )
        self._report(f"Downloading {release.asset_name}{size_hint}...")

        archive = scratch / release.asset_name
        downloaded = await self._fetcher.download(release.asset_url, archive)
        manifest = await self._fetcher.fetch_text(release.checksums_url)

        expected = extract_checksum(manifest, release.asset_name)
        if not expected:
            raise IntegrityError(
                f"Checksum manifest has no entry for {release.asset_name}",
                details={"asset": release.asset_name, "url": release.checksums_url},
            )

        self._report("Verifying checksum...")
        verify_checksum(archive, expected)
        return downloaded

    def _extract(self, archive: Path, dest: Path) -> Path:
        self._report("Extracting...")
        extract_tar_gz(archive, dest)
        return find_binary(dest, self._binary_name)
