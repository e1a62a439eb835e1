"""
Tests for the update orchestration flow.

Tests cover:
- format_size
- Dev-build handling with and without force
- Cache-driven short circuits
- The full download -> verify -> extract -> install sequence
- Abort paths (integrity, unsafe archive, missing binary, unavailable server)
- Scratch directory cleanup
- Construction from AppConfig
"""

from __future__ import annotations

import hashlib
import shutil
from collections.abc import Callable
from pathlib import Path
from unittest import mock

import pytest

from agentsview.config import AppConfig, UpdatesConfig
from agentsview.errors import (
    FailedPreconditionError,
    IntegrityError,
    UnavailableError,
    UnsafePathError,
)
from agentsview.update.cache import load_cache, save_cache
from agentsview.update.releases import (
    GitHubReleaseResolver,
    HttpFetcher,
    ReleaseFetcher,
    ReleaseInfo,
    ReleaseResolver,
)
from agentsview.update.service import UpdateService, format_size

ASSET = "agentsview_0.2.0_linux_amd64.tar.gz"
ASSET_URL = f"https://example.com/download/{ASSET}"
SUMS_URL = "https://example.com/download/SHA256SUMS"

# =============================================================================
# Fakes
# =============================================================================


class FakeResolver(ReleaseResolver):
    """Resolver returning a fixed release, or raising a fixed error."""

    def __init__(
        self, release: ReleaseInfo | None = None, error: Exception | None = None
    ) -> None:
        self.release = release
        self.error = error
        self.calls = 0

    async def latest_release(self) -> ReleaseInfo:
        self.calls += 1
        if self.error is not None:
            raise self.error
        assert self.release is not None
        return self.release


class FakeFetcher(ReleaseFetcher):
    """Fetcher serving local files and text by URL."""

    def __init__(self, files: dict[str, Path], texts: dict[str, str]) -> None:
        self.files = files
        self.texts = texts
        self.downloaded: list[str] = []

    async def fetch_text(self, url: str) -> str:
        if url not in self.texts:
            raise UnavailableError(f"404 for {url}", details={"url": url})
        return self.texts[url]

    async def download(self, url, dest, progress=None) -> int:
        self.downloaded.append(url)
        shutil.copyfile(self.files[url], dest)
        return dest.stat().st_size


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def release() -> ReleaseInfo:
    """The latest release as the resolver reports it."""
    return ReleaseInfo(
        version="v0.2.0",
        asset_name=ASSET,
        asset_url=ASSET_URL,
        asset_size=2048,
        checksums_url=SUMS_URL,
    )


@pytest.fixture
def good_archive(make_tarball: Callable[..., Path]) -> Path:
    """A release archive holding the new binary."""
    return make_tarball(
        [
            ("agentsview_0.2.0", None, 0o755),
            ("agentsview_0.2.0/agentsview", b"binary-0.2.0", 0o755),
            ("agentsview_0.2.0/LICENSE", b"MIT", 0o644),
        ],
        name=ASSET,
    )


def _sums_for(archive: Path, name: str = ASSET) -> str:
    digest = hashlib.sha256(archive.read_bytes()).hexdigest()
    return f"0000  other.tar.gz\n{digest}  {name}\n"


@pytest.fixture
def install_path(tmp_path: Path) -> Path:
    """The currently installed binary."""
    path = tmp_path / "bin" / "agentsview"
    path.parent.mkdir()
    path.write_bytes(b"binary-0.1.0")
    path.chmod(0o755)
    return path


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Update cache directory."""
    return tmp_path / "cache"


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    """A known scratch directory handed out in place of mkdtemp."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def reports() -> list[str]:
    """Collected progress lines."""
    return []


def _service(
    resolver: ReleaseResolver,
    fetcher: ReleaseFetcher,
    cache_dir: Path,
    install_path: Path,
    reports: list[str],
    current_version: str = "v0.1.0",
) -> UpdateService:
    return UpdateService(
        current_version=current_version,
        resolver=resolver,
        fetcher=fetcher,
        cache_dir=cache_dir,
        install_path=install_path,
        check_interval_seconds=3600,
        reporter=reports.append,
        binary_name="agentsview",
    )


# =============================================================================
# format_size Tests
# =============================================================================


class TestFormatSize:
    """Tests for format_size function."""

    @pytest.mark.parametrize(
        ("num_bytes", "expected"),
        [
            (0, "0 B"),
            (500, "500 B"),
            (1023, "1023 B"),
            (1024, "1.0 KB"),
            (1536, "1.5 KB"),
            (1048576, "1.0 MB"),
            (10485760, "10.0 MB"),
            (3 * 1024**3, "3.0 GB"),
        ],
    )
    def test_format_size(self, num_bytes: int, expected: str) -> None:
        """Test byte counts render with one decimal above 1 KB."""
        assert format_size(num_bytes) == expected


# =============================================================================
# check_for_update Tests
# =============================================================================


class TestCheckForUpdate:
    """Tests for UpdateService.check_for_update."""

    @pytest.mark.asyncio
    async def test_dev_build_skips_remote(
        self, cache_dir: Path, install_path: Path, reports: list[str]
    ) -> None:
        """Test a dev build reports itself without a remote call."""
        resolver = FakeResolver(error=AssertionError("must not be called"))
        service = _service(
            resolver, FakeFetcher({}, {}), cache_dir, install_path, reports, "dev"
        )

        check = await service.check_for_update()

        assert check.is_dev_build is True
        assert check.update_available is False
        assert resolver.calls == 0

    @pytest.mark.asyncio
    async def test_remote_check_saves_cache(
        self,
        release: ReleaseInfo,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test a cache miss queries the resolver and records the answer."""
        resolver = FakeResolver(release)
        service = _service(
            resolver, FakeFetcher({}, {}), cache_dir, install_path, reports
        )

        check = await service.check_for_update()

        assert check.latest_version == "v0.2.0"
        assert check.update_available is True
        assert check.from_cache is False
        assert resolver.calls == 1
        assert load_cache(cache_dir).version == "v0.2.0"

    @pytest.mark.asyncio
    async def test_fresh_cache_answers(
        self, cache_dir: Path, install_path: Path, reports: list[str]
    ) -> None:
        """Test a fresh cache answers without a remote call."""
        save_cache("v0.3.0", cache_dir)
        resolver = FakeResolver(error=AssertionError("must not be called"))
        service = _service(
            resolver, FakeFetcher({}, {}), cache_dir, install_path, reports
        )

        check = await service.check_for_update()

        assert check.from_cache is True
        assert check.latest_version == "v0.3.0"
        assert check.update_available is True
        assert resolver.calls == 0

    @pytest.mark.asyncio
    async def test_force_ignores_cache(
        self,
        release: ReleaseInfo,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test force=True always asks the resolver."""
        save_cache("v0.1.0", cache_dir)
        resolver = FakeResolver(release)
        service = _service(
            resolver, FakeFetcher({}, {}), cache_dir, install_path, reports
        )

        check = await service.check_for_update(force=True)

        assert check.from_cache is False
        assert check.latest_version == "v0.2.0"
        assert resolver.calls == 1

    @pytest.mark.asyncio
    async def test_corrupt_cache_falls_back_to_remote(
        self,
        release: ReleaseInfo,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test an unreadable cache is treated as no information."""
        cache_dir.mkdir()
        (cache_dir / "update-check.json").write_text("{not json")
        resolver = FakeResolver(release)
        service = _service(
            resolver, FakeFetcher({}, {}), cache_dir, install_path, reports
        )

        check = await service.check_for_update()

        assert check.from_cache is False
        assert resolver.calls == 1

    @pytest.mark.asyncio
    async def test_unavailable_propagates(
        self, cache_dir: Path, install_path: Path, reports: list[str]
    ) -> None:
        """Test a resolver failure is raised and nothing is cached."""
        resolver = FakeResolver(error=UnavailableError("offline"))
        service = _service(
            resolver, FakeFetcher({}, {}), cache_dir, install_path, reports
        )

        with pytest.raises(UnavailableError):
            await service.check_for_update()

        assert not (cache_dir / "update-check.json").exists()


# =============================================================================
# run_update Tests
# =============================================================================


class TestRunUpdate:
    """Tests for UpdateService.run_update."""

    @pytest.mark.asyncio
    async def test_successful_update(
        self,
        release: ReleaseInfo,
        good_archive: Path,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test the whole flow installs the new binary and records it."""
        fetcher = FakeFetcher(
            {ASSET_URL: good_archive}, {SUMS_URL: _sums_for(good_archive)}
        )
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports
        )

        result = await service.run_update()

        assert result.status == "updated"
        assert result.old_version == "v0.1.0"
        assert result.new_version == "v0.2.0"
        assert result.installed_path == str(install_path)
        assert result.downloaded_bytes == good_archive.stat().st_size
        assert install_path.read_bytes() == b"binary-0.2.0"
        assert not install_path.with_name("agentsview.old").exists()
        assert load_cache(cache_dir).version == "v0.2.0"
        assert reports[-1] == result.message
        assert "v0.1.0 -> v0.2.0" in result.message
        assert format_size(result.downloaded_bytes) in result.message

    @pytest.mark.asyncio
    async def test_progress_lines(
        self,
        release: ReleaseInfo,
        good_archive: Path,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test each step reports a progress line in order."""
        fetcher = FakeFetcher(
            {ASSET_URL: good_archive}, {SUMS_URL: _sums_for(good_archive)}
        )
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports
        )

        await service.run_update()

        assert reports[0] == "Checking for updates..."
        assert reports[2] == f"Downloading {ASSET} (2.0 KB)..."
        assert "Verifying checksum..." in reports
        assert reports.index("Verifying checksum...") < reports.index("Extracting...")

    @pytest.mark.asyncio
    async def test_scratch_directory_removed(
        self,
        release: ReleaseInfo,
        good_archive: Path,
        cache_dir: Path,
        install_path: Path,
        scratch_dir: Path,
        reports: list[str],
    ) -> None:
        """Test the scratch directory is removed after success."""
        fetcher = FakeFetcher(
            {ASSET_URL: good_archive}, {SUMS_URL: _sums_for(good_archive)}
        )
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports
        )

        with mock.patch(
            "agentsview.update.service.tempfile.mkdtemp",
            return_value=str(scratch_dir),
        ):
            await service.run_update()

        assert not scratch_dir.exists()

    @pytest.mark.asyncio
    async def test_dev_build_skipped(
        self, cache_dir: Path, install_path: Path, reports: list[str]
    ) -> None:
        """Test a dev build is not updated without force."""
        resolver = FakeResolver(error=AssertionError("must not be called"))
        service = _service(
            resolver,
            FakeFetcher({}, {}),
            cache_dir,
            install_path,
            reports,
            "0.1.0-3-gabc123-dirty",
        )

        result = await service.run_update()

        assert result.status == "skipped_dev_build"
        assert resolver.calls == 0
        assert install_path.read_bytes() == b"binary-0.1.0"
        assert "development build" in reports[0]

    @pytest.mark.asyncio
    async def test_dev_build_forced(
        self,
        release: ReleaseInfo,
        good_archive: Path,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test force=True updates a dev build to the latest release."""
        fetcher = FakeFetcher(
            {ASSET_URL: good_archive}, {SUMS_URL: _sums_for(good_archive)}
        )
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports, "dev"
        )

        result = await service.run_update(force=True)

        assert result.status == "updated"
        assert install_path.read_bytes() == b"binary-0.2.0"

    @pytest.mark.asyncio
    async def test_up_to_date(
        self,
        release: ReleaseInfo,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test nothing is downloaded when the latest is not newer."""
        fetcher = FakeFetcher({}, {})
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports, "0.2.0"
        )

        result = await service.run_update()

        assert result.status == "up_to_date"
        assert result.new_version == "0.2.0"
        assert fetcher.downloaded == []
        assert load_cache(cache_dir).version == "v0.2.0"
        assert reports[-1] == "agentsview v0.2.0 is up to date"

    @pytest.mark.asyncio
    async def test_fresh_cache_not_newer_skips_remote(
        self, cache_dir: Path, install_path: Path, reports: list[str]
    ) -> None:
        """Test a fresh cache with nothing newer stops before the resolver."""
        save_cache("v0.1.0", cache_dir)
        resolver = FakeResolver(error=AssertionError("must not be called"))
        service = _service(
            resolver, FakeFetcher({}, {}), cache_dir, install_path, reports
        )

        result = await service.run_update()

        assert result.status == "up_to_date"
        assert resolver.calls == 0

    @pytest.mark.asyncio
    async def test_fresh_cache_newer_proceeds(
        self,
        release: ReleaseInfo,
        good_archive: Path,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test a fresh cache announcing a newer version still updates."""
        save_cache("v0.2.0", cache_dir)
        resolver = FakeResolver(release)
        fetcher = FakeFetcher(
            {ASSET_URL: good_archive}, {SUMS_URL: _sums_for(good_archive)}
        )
        service = _service(resolver, fetcher, cache_dir, install_path, reports)

        result = await service.run_update()

        assert result.status == "updated"
        assert resolver.calls == 1

    @pytest.mark.asyncio
    async def test_checksum_mismatch_aborts_before_install(
        self,
        release: ReleaseInfo,
        good_archive: Path,
        cache_dir: Path,
        install_path: Path,
        scratch_dir: Path,
        reports: list[str],
    ) -> None:
        """Test a digest mismatch leaves the installed binary untouched."""
        fetcher = FakeFetcher(
            {ASSET_URL: good_archive}, {SUMS_URL: f"{'0' * 64}  {ASSET}\n"}
        )
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports
        )

        with mock.patch(
            "agentsview.update.service.tempfile.mkdtemp",
            return_value=str(scratch_dir),
        ):
            with pytest.raises(IntegrityError, match="Checksum mismatch"):
                await service.run_update()

        assert install_path.read_bytes() == b"binary-0.1.0"
        assert not scratch_dir.exists()
        assert not (cache_dir / "update-check.json").exists()

    @pytest.mark.asyncio
    async def test_manifest_without_entry(
        self,
        release: ReleaseInfo,
        good_archive: Path,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test a manifest lacking the asset is an integrity failure."""
        fetcher = FakeFetcher(
            {ASSET_URL: good_archive},
            {SUMS_URL: _sums_for(good_archive, name="something-else.tar.gz")},
        )
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports
        )

        with pytest.raises(IntegrityError, match="no entry"):
            await service.run_update()

        assert install_path.read_bytes() == b"binary-0.1.0"

    @pytest.mark.asyncio
    async def test_release_without_manifest(
        self,
        release: ReleaseInfo,
        good_archive: Path,
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test a release publishing no manifest is refused before download."""
        fetcher = FakeFetcher({ASSET_URL: good_archive}, {})
        service = _service(
            FakeResolver(release.model_copy(update={"checksums_url": None})),
            fetcher,
            cache_dir,
            install_path,
            reports,
        )

        with pytest.raises(IntegrityError, match="no checksum manifest"):
            await service.run_update()

        assert fetcher.downloaded == []

    @pytest.mark.asyncio
    async def test_unsafe_archive(
        self,
        release: ReleaseInfo,
        make_tarball: Callable[..., Path],
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test a traversal entry aborts the update before install."""
        archive = make_tarball(
            [("agentsview", b"binary-0.2.0", 0o755), ("../../evil", b"x", 0o644)],
            name="evil.tar.gz",
        )
        fetcher = FakeFetcher({ASSET_URL: archive}, {SUMS_URL: _sums_for(archive)})
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports
        )

        with pytest.raises(UnsafePathError):
            await service.run_update()

        assert install_path.read_bytes() == b"binary-0.1.0"

    @pytest.mark.asyncio
    async def test_archive_without_binary(
        self,
        release: ReleaseInfo,
        make_tarball: Callable[..., Path],
        cache_dir: Path,
        install_path: Path,
        reports: list[str],
    ) -> None:
        """Test an archive missing the executable fails the precondition."""
        archive = make_tarball([("README.md", b"docs", 0o644)], name="empty.tar.gz")
        fetcher = FakeFetcher({ASSET_URL: archive}, {SUMS_URL: _sums_for(archive)})
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports
        )

        with pytest.raises(FailedPreconditionError):
            await service.run_update()

        assert install_path.read_bytes() == b"binary-0.1.0"

    @pytest.mark.asyncio
    async def test_manifest_download_failure(
        self,
        release: ReleaseInfo,
        good_archive: Path,
        cache_dir: Path,
        install_path: Path,
        scratch_dir: Path,
        reports: list[str],
    ) -> None:
        """Test a failed manifest download propagates and cleans up."""
        fetcher = FakeFetcher({ASSET_URL: good_archive}, {})
        service = _service(
            FakeResolver(release), fetcher, cache_dir, install_path, reports
        )

        with mock.patch(
            "agentsview.update.service.tempfile.mkdtemp",
            return_value=str(scratch_dir),
        ):
            with pytest.raises(UnavailableError):
                await service.run_update()

        assert not scratch_dir.exists()
        assert install_path.read_bytes() == b"binary-0.1.0"


# =============================================================================
# from_config Tests
# =============================================================================


class TestFromConfig:
    """Tests for UpdateService.from_config."""

    def test_wires_collaborators(self, tmp_path: Path) -> None:
        """Test configured values reach the service and its collaborators."""
        config = AppConfig(
            updates=UpdatesConfig(
                repository="example/fork",
                cache_dir=str(tmp_path / "cache"),
                install_path=str(tmp_path / "bin" / "agentsview"),
                check_interval_seconds=60,
                http_timeout_seconds=5,
                max_download_bytes=1024,
            )
        )

        service = UpdateService.from_config(config, "v0.1.0")

        assert service.current_version == "v0.1.0"
        assert service.cache_dir == tmp_path / "cache"
        assert service.install_path == (tmp_path / "bin" / "agentsview").resolve()
        assert service.check_interval_seconds == 60
        assert isinstance(service._resolver, GitHubReleaseResolver)
        assert service._resolver.repository == "example/fork"
        assert service._resolver.timeout == 5
        assert isinstance(service._fetcher, HttpFetcher)
        assert service._fetcher.max_bytes == 1024
