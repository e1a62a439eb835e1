"""
Version handling for agentsview releases.

Build systems hand us free-form strings: "dev", "unknown", "", bare
"0.1.0", tagged "v0.1.0", pre-releases such as "0.1.0-rc1", and git
describe output such as "0.1.0-2-gabcdef-dirty". This module:
- classifies development builds
- normalizes versions to "vMAJOR.MINOR.PATCH[-pre]"
- orders versions with a simplified semantic-version precedence

Pre-release ordering compares the trailing number of a single-field
identifier ("rc2" > "rc1", "beta10" > "beta9"). Multi-field pre-releases
and build metadata are not given full semver treatment.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

DEV_SENTINELS = frozenset({"", "dev", "unknown"})

# <base>-<commits>-g<hash>[-dirty]
GIT_DESCRIBE_PATTERN = re.compile(
    r"^(?P<base>.+?)-(?P<commits>\d+)-g(?P<hash>[0-9a-fA-F]+)(?P<dirty>-dirty)?$"
)

CORE_PATTERN = re.compile(r"^(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)")

SEMVER_PATTERN = re.compile(
    r"^v(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    r"(?:-(?P<prerelease>[0-9A-Za-z][0-9A-Za-z.\-]*))?$"
)

# "rc1" -> ("rc", "1")
_WORD_DIGITS_PATTERN = re.compile(r"^(?P<word>[A-Za-z]+)(?P<digits>\d+)$")

# Trailing number of a pre-release identifier, with or without a dot
_TRAILING_NUMBER_PATTERN = re.compile(r"^(?P<word>.*?)\.?(?P<number>\d+)$")


def is_dev_build_version(version: str) -> bool:
    """
    Return True when ``version`` denotes an unreleased/local build.

    Dev builds are the sentinels "", "dev" and "unknown" (case-sensitive) and
    any git-describe string ``<base>-<n>-g<hex>[-dirty]``.
    """
    if version in DEV_SENTINELS:
        return True
    return GIT_DESCRIBE_PATTERN.match(version) is not None


def normalize_semver(version: str) -> str:
    """
    Normalize a version string to ``vMAJOR.MINOR.PATCH[-pre]``.

    - A leading ``v`` is ensured.
    - ``<word><digits>`` pre-releases become ``<word>.<digits>`` so the
      digits sort numerically ("rc1" -> "rc.1").
    - Git-describe strings reduce to their ``vMAJOR.MINOR.PATCH`` base.

    Normalizing an already-normalized string returns it unchanged.

    Examples:
        >>> normalize_semver("0.1.0-rc1")
        'v0.1.0-rc.1'
        >>> normalize_semver("0.1.0-2-gabcdef-dirty")
        'v0.1.0'
    """
    version = version.strip()
    bare = version[1:] if version.startswith("v") else version

    describe = GIT_DESCRIBE_PATTERN.match(bare)
    if describe is not None:
        core = CORE_PATTERN.match(describe.group("base").lstrip("v"))
        if core is not None:
            return "v" + core.group(0)
        return "v" + describe.group("base").lstrip("v")

    base, sep, prerelease = bare.partition("-")
    if sep:
        word_digits = _WORD_DIGITS_PATTERN.match(prerelease)
        if word_digits is not None:
            prerelease = f"{word_digits.group('word')}.{word_digits.group('digits')}"
        return f"v{base}-{prerelease}"

    return f"v{bare}"


@dataclass(frozen=True)
class Version:
    """
    A parsed version string.

    Attributes:
        raw: The input string as given.
        normalized: normalize_semver(raw).
        is_dev_build: Whether raw denotes a development build.
        major, minor, patch: Numeric core, or None when unparseable.
        prerelease: Normalized pre-release identifier, if any.
    """

    raw: str
    normalized: str
    is_dev_build: bool
    major: int | None = None
    minor: int | None = None
    patch: int | None = None
    prerelease: str | None = None

    @classmethod
    def parse(cls, raw: str) -> Version:
        """Parse ``raw``. Never raises; unparseable input has ``valid == False``."""
        normalized = normalize_semver(raw)
        is_dev = is_dev_build_version(raw)
        match = SEMVER_PATTERN.match(normalized)
        if match is None:
            return cls(raw=raw, normalized=normalized, is_dev_build=is_dev)
        return cls(
            raw=raw,
            normalized=normalized,
            is_dev_build=is_dev,
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            prerelease=match.group("prerelease"),
        )

    @property
    def valid(self) -> bool:
        """Whether the version parsed as MAJOR.MINOR.PATCH[-pre]."""
        return self.major is not None

    @property
    def core(self) -> tuple[int, int, int]:
        """The (major, minor, patch) triple. Only meaningful when valid."""
        return (self.major or 0, self.minor or 0, self.patch or 0)

    def __str__(self) -> str:
        return self.normalized


def _prerelease_key(prerelease: str) -> tuple[int, str]:
    """Sort key for a pre-release: trailing number first, then the word."""
    match = _TRAILING_NUMBER_PATTERN.match(prerelease)
    if match is None:
        return (-1, prerelease)
    return (int(match.group("number")), match.group("word"))


def _cmp(left: Any, right: Any) -> int:
    return (left > right) - (left < right)


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two version strings.

    Returns:
        -1 if v1 < v2, 0 if they are equivalent, 1 if v1 > v2.

    Unparseable versions never raise: two unparseable versions are compared
    lexically on their normalized form, and an unparseable version ranks
    below any parseable one.
    """
    p1 = Version.parse(v1)
    p2 = Version.parse(v2)

    if not p1.valid or not p2.valid:
        if p1.valid != p2.valid:
            return 1 if p1.valid else -1
        return _cmp(p1.normalized, p2.normalized)

    result = _cmp(p1.core, p2.core)
    if result:
        return result

    # No pre-release > with pre-release
    if p1.prerelease is None and p2.prerelease is not None:
        return 1
    if p1.prerelease is not None and p2.prerelease is None:
        return -1
    if p1.prerelease is not None and p2.prerelease is not None:
        return _cmp(_prerelease_key(p1.prerelease), _prerelease_key(p2.prerelease))

    return 0


def is_newer(candidate: str, current: str) -> bool:
    """
    Return True iff ``candidate`` strictly exceeds ``current``.

    A leading ``v`` is ignored and equal versions are not newer.

    Examples:
        >>> is_newer("0.1.0", "0.1.0-rc1")
        True
        >>> is_newer("0.1.0-rc2", "0.1.0-rc1")
        True
    """
    return compare_versions(candidate, current) > 0
