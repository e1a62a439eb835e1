"""
Self-update mechanism for agentsview.

This package implements the check -> verify -> install flow:
- Version parsing, dev-build detection and ordering
- Checksum manifest parsing and SHA-256 verification
- Zip-slip-safe tar.gz extraction
- Backup-and-restore replacement of the running binary
- Persisted update-check cache
- GitHub release resolution and HTTP download
- UpdateService orchestrating the whole flow
"""

from agentsview.update.archive import extract_tar_gz, find_binary
from agentsview.update.cache import (
    CacheRecord,
    is_cache_fresh,
    load_cache,
    save_cache,
)
from agentsview.update.checksum import (
    ChecksumEntry,
    ChecksumManifest,
    calculate_sha256,
    extract_checksum,
    verify_checksum,
)
from agentsview.update.installer import (
    binary_backup,
    install_binary_to,
    resolve_executable_path,
)
from agentsview.update.paths import sanitize_path
from agentsview.update.releases import (
    GitHubReleaseResolver,
    HttpFetcher,
    ReleaseFetcher,
    ReleaseInfo,
    ReleaseResolver,
    asset_name_for,
    binary_name_for,
)
from agentsview.update.service import (
    UpdateCheck,
    UpdateResult,
    UpdateService,
    format_size,
)
from agentsview.update.version import (
    Version,
    compare_versions,
    is_dev_build_version,
    is_newer,
    normalize_semver,
)

__all__ = [
    # Version model
    "Version",
    "compare_versions",
    "is_dev_build_version",
    "is_newer",
    "normalize_semver",
    # Checksums
    "ChecksumEntry",
    "ChecksumManifest",
    "calculate_sha256",
    "extract_checksum",
    "verify_checksum",
    # Extraction
    "sanitize_path",
    "extract_tar_gz",
    "find_binary",
    # Install
    "binary_backup",
    "install_binary_to",
    "resolve_executable_path",
    # Cache
    "CacheRecord",
    "is_cache_fresh",
    "load_cache",
    "save_cache",
    # Collaborators
    "ReleaseInfo",
    "ReleaseResolver",
    "ReleaseFetcher",
    "GitHubReleaseResolver",
    "HttpFetcher",
    "asset_name_for",
    "binary_name_for",
    # Orchestration
    "UpdateService",
    "UpdateCheck",
    "UpdateResult",
    "format_size",
]
