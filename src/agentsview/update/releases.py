"""
Release discovery and download for agentsview.

Two collaborators feed the update flow:
- ReleaseResolver: reports the latest release version plus the download URLs
  of the platform asset and the checksum manifest
- ReleaseFetcher: downloads URLs as text or to a file

The concrete implementations talk to the GitHub Releases API over httpx.
The update flow only depends on the abstract interfaces.
"""

from __future__ import annotations

import platform
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, Field

from agentsview import __version__
from agentsview.errors import (
    FailedPreconditionError,
    UnavailableError,
    UpdateIOError,
)
from agentsview.logging import get_logger

logger = get_logger(__name__)

BINARY_NAME = "agentsview"

CHECKSUM_ASSET_NAMES = ("SHA256SUMS", "checksums.txt")

_OS_NAMES = {
    "linux": "linux",
    "darwin": "darwin",
    "windows": "windows",
}

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}

ProgressCallback = Callable[[int, int | None], None]


class ReleaseInfo(BaseModel):
    """
    The latest published release, as seen from this platform.

    Attributes:
        version: Release version (tag name).
        asset_name: Archive file name for this platform.
        asset_url: Download URL of the archive.
        asset_size: Archive size in bytes, if the server reported it.
        checksums_url: Download URL of the checksum manifest, if published.
    """

    version: str = Field(..., description="Release version (tag name)")
    asset_name: str = Field(..., description="Archive file name for this platform")
    asset_url: str = Field(..., description="Archive download URL")
    asset_size: int | None = Field(default=None, description="Archive size in bytes")
    checksums_url: str | None = Field(
        default=None,
        description="Checksum manifest download URL",
    )


def _platform_parts(system: str | None, machine: str | None) -> tuple[str, str]:
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()

    os_name = _OS_NAMES.get(system)
    arch = _ARCH_NAMES.get(machine)
    if os_name is None or arch is None:
        raise FailedPreconditionError(
            f"No agentsview release for platform {system}/{machine}",
            details={"system": system, "machine": machine},
        )
    return os_name, arch


def asset_name_for(
    version: str,
    system: str | None = None,
    machine: str | None = None,
) -> str:
    """
    Return the release archive name for a version and platform.

    Example:
        >>> asset_name_for("v0.1.0", "Linux", "x86_64")
        'agentsview_0.1.0_linux_amd64.tar.gz'

    Raises:
        FailedPreconditionError: If the platform has no published build.
    """
    os_name, arch = _platform_parts(system, machine)
    bare = version[1:] if version.startswith("v") else version
    return f"{BINARY_NAME}_{bare}_{os_name}_{arch}.tar.gz"


def binary_name_for(system: str | None = None) -> str:
    """Return the executable name inside the release archive."""
    system = (system or platform.system()).lower()
    if system == "windows":
        return f"{BINARY_NAME}.exe"
    return BINARY_NAME


def _user_agent() -> str:
    return f"agentsview-updater/{__version__}"


class ReleaseResolver(ABC):
    """Source of the latest release metadata."""

    @abstractmethod
    async def latest_release(self) -> ReleaseInfo:
        """
        Return the latest release for this platform.

        Raises:
            UnavailableError: If the release server is unreachable.
            FailedPreconditionError: If no asset exists for this platform.
        """


class ReleaseFetcher(ABC):
    """Downloads release files."""

    @abstractmethod
    async def fetch_text(self, url: str) -> str:
        """Return the body of ``url`` as text."""

    @abstractmethod
    async def download(
        self,
        url: str,
        dest: Path,
        progress: ProgressCallback | None = None,
    ) -> int:
        """Stream ``url`` into ``dest`` and return the number of bytes written."""


class GitHubReleaseResolver(ReleaseResolver):
    """
    Resolves the latest release through the GitHub Releases API.

    Attributes:
        repository: Repository in owner/name form.
        api_url: API base URL.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        repository: str,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        token: str | None = None,
        *,
        system: str | None = None,
        machine: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._system = system
        self._machine = machine
        self._transport = transport

    @property
    def latest_release_url(self) -> str:
        """URL of the latest-release endpoint."""
        return f"{self.api_url}/repos/{self.repository}/releases/latest"

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": _user_agent(),
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def latest_release(self) -> ReleaseInfo:
        """Query the latest-release endpoint and pick this platform's asset."""
        url = self.latest_release_url
        logger.debug("Fetching latest release", extra={"url": url})

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers(),
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error("Failed to fetch latest release: %s", str(e))
            raise UnavailableError(
                f"Failed to fetch latest release: {e}",
                details={"url": url, "error": str(e)},
            ) from e
        except ValueError as e:
            raise UnavailableError(
                f"Invalid release response: {e}",
                details={"url": url, "error": str(e)},
            ) from e

        return self._parse_release(data)

    def _parse_release(self, data: Any) -> ReleaseInfo:
        if not isinstance(data, dict):
            raise UnavailableError(
                "Release response is not a JSON object",
                details={"repository": self.repository},
            )

        tag = data.get("tag_name")
        if not isinstance(tag, str) or not tag:
            raise UnavailableError(
                "Release response has no tag_name",
                details={"repository": self.repository},
            )

        wanted = asset_name_for(tag, self._system, self._machine)
        raw_assets = data.get("assets") or []
        if not isinstance(raw_assets, list):
            raw_assets = []
        assets = [a for a in raw_assets if isinstance(a, dict)]

        asset = next((a for a in assets if a.get("name") == wanted), None)
        if asset is None:
            raise FailedPreconditionError(
                f"Release {tag} has no asset {wanted}",
                details={
                    "version": tag,
                    "asset": wanted,
                    "available": [a.get("name") for a in assets],
                },
            )

        checksums = next(
            (
                a
                for a in assets
                if a.get("name") in CHECKSUM_ASSET_NAMES
                or str(a.get("name", "")).endswith("checksums.txt")
            ),
            None,
        )

        size = asset.get("size")
        release = ReleaseInfo(
            version=tag,
            asset_name=wanted,
            asset_url=self._download_url(asset, tag),
            asset_size=size if isinstance(size, int) else None,
            checksums_url=self._download_url(checksums, tag) if checksums else None,
        )
        logger.info(
            "Resolved latest release",
            extra={"version": release.version, "asset": release.asset_name},
        )
        return release

    def _download_url(self, asset: dict[str, Any], tag: str) -> str:
        url = asset.get("browser_download_url")
        if not isinstance(url, str) or not url:
            raise UnavailableError(
                f"Release {tag} asset {asset.get('name')} has no download URL",
                details={"version": tag, "asset": asset.get("name")},
            )
        return url


class HttpFetcher(ReleaseFetcher):
    """
    Downloads release files over HTTP(S).

    Attributes:
        timeout: Request timeout in seconds.
        max_bytes: Largest accepted download.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_bytes: int = 200 * 1024 * 1024,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": _user_agent()},
            follow_redirects=True,
            transport=self._transport,
        )

    async def fetch_text(self, url: str) -> str:
        """
        Fetch ``url`` as text.

        Raises:
            UnavailableError: On transport failure or a non-success status.
        """
        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as e:
            raise UnavailableError(
                f"Failed to download {url}: {e}",
                details={"url": url, "error": str(e)},
            ) from e

    async def download(
        self,
        url: str,
        dest: Path,
        progress: ProgressCallback | None = None,
    ) -> int:
        """
        Stream ``url`` into ``dest``.

        Args:
            url: Download URL.
            dest: File to create or overwrite.
            progress: Optional callback receiving (bytes_so_far, total_or_None).

        Returns:
            Number of bytes written.

        Raises:
            UnavailableError: On transport failure or a non-success status.
            FailedPreconditionError: If the body exceeds ``max_bytes``.
            UpdateIOError: If ``dest`` cannot be written.
        """
        written = 0
        try:
            async with self._client() as client, client.stream("GET", url) as response:
                response.raise_for_status()
                length = response.headers.get("Content-Length")
                total = int(length) if length and length.isdigit() else None

                with dest.open("wb") as out:
                    async for chunk in response.aiter_bytes():
                        written += len(chunk)
                        if written > self.max_bytes:
                            raise FailedPreconditionError(
                                f"Download exceeds {self.max_bytes} bytes",
                                details={"url": url, "max_bytes": self.max_bytes},
                            )
                        out.write(chunk)
                        if progress is not None:
                            progress(written, total)
        except httpx.HTTPError as e:
            raise UnavailableError(
                f"Failed to download {url}: {e}",
                details={"url": url, "error": str(e)},
            ) from e
        except OSError as e:
            raise UpdateIOError(
                f"Failed to write {dest}: {e}",
                details={"path": str(dest), "error": str(e)},
            ) from e

        logger.debug("Downloaded", extra={"url": url, "bytes": written})
        return written
