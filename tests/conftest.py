"""
Pytest configuration for the agentsview self-update tests.
"""

from __future__ import annotations

import io
import logging
import os
import tarfile
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the real ~/.agentsview and AGENTSVIEW_* variables."""
    for key in list(os.environ):
        if key.startswith("AGENTSVIEW_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture(autouse=True)
def _reset_agentsview_logger() -> Iterator[None]:
    """Undo setup_logging() side effects between tests."""
    yield
    logger = logging.getLogger("agentsview")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


TarMember = tuple[str, bytes | None, int]


@pytest.fixture
def make_tarball(tmp_path: Path) -> Callable[..., Path]:
    """
    Build a .tar.gz archive from (name, content, mode) tuples.

    A content of None creates a directory entry.
    """

    def _make(
        members: list[TarMember],
        name: str = "archive.tar.gz",
        symlinks: dict[str, str] | None = None,
    ) -> Path:
        archive = tmp_path / name
        with tarfile.open(archive, "w:gz") as tar:
            for member_name, content, mode in members:
                info = tarfile.TarInfo(member_name)
                info.mode = mode
                if content is None:
                    info.type = tarfile.DIRTYPE
                    tar.addfile(info)
                else:
                    info.size = len(content)
                    tar.addfile(info, io.BytesIO(content))
            for link_name, target in (symlinks or {}).items():
                info = tarfile.TarInfo(link_name)
                info.type = tarfile.SYMTYPE
                info.linkname = target
                tar.addfile(info)
        return archive

    return _make
