"""Shared fixtures for the UCX Sync test suite."""

import os
import threading
from pathlib import Path

import pytest

from ucx_sync.config import SyncSettings
from ucx_sync.registry import SourceKey

PROJECT = "Test1"
TB = 1024 ** 4


def write_file(path: Path, data: bytes = b"x", mtime: float | None = None) -> Path:
    """Create *path* (and parents) holding *data*, optionally with *mtime*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sources(tmp_path):
    """Base directory standing in for the network shares."""
    base = tmp_path / "sources"
    base.mkdir()
    return base


@pytest.fixture
def project_root(sources):
    """Return a helper giving the project directory on one node/share."""
    def _root(node: str, share: str = "E$", create: bool = True) -> Path:
        path = sources / node / share / PROJECT
        if create:
            path.mkdir(parents=True, exist_ok=True)
        return path
    return _root


@pytest.fixture
def dest_root(tmp_path):
    path = tmp_path / "dest"
    path.mkdir()
    return path


@pytest.fixture
def settings(sources, dest_root):
    """Two nodes with one share each, pointing at the temp source tree."""
    return SyncSettings(
        nodes=("WU01", "WU02"),
        shares=("E$",),
        destination_root=str(dest_root),
        project_name=PROJECT,
        source_root_pattern=str(sources / "{node}" / "{share}"),
        retry_attempts=2,
        retry_delay_seconds=0,
        poll_interval_seconds=5,
    )


@pytest.fixture
def plenty_of_space():
    return lambda path: TB


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key1():
    return SourceKey("WU01", "E$")


@pytest.fixture
def key2():
    return SourceKey("WU02", "E$")


@pytest.fixture
def gate(monkeypatch):
    """
    Make every file copy block until ``gate.release`` is set.

    ``gate.entered`` is set once a copy worker is inside a copy.
    """
    from ucx_sync.copier import FileDiffCopier

    class Gate:
        entered = threading.Event()
        release = threading.Event()

    real_copy = FileDiffCopier._copy_file

    def _blocking_copy(self, source, dest):
        Gate.entered.set()
        Gate.release.wait(10)
        real_copy(self, source, dest)

    monkeypatch.setattr(FileDiffCopier, "_copy_file", _blocking_copy)
    yield Gate
    Gate.release.set()
