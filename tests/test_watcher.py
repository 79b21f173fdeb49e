"""Tests for the source activity watcher."""
import threading

import pytest
from watchdog.events import DirCreatedEvent, FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from ucx_sync.registry import SourceKey
from ucx_sync.watcher import SourceActivityWatcher, SourceEventHandler
from tests.conftest import write_file

KEY = SourceKey("WU01", "E$")


class TestSourceEventHandler:
    def test_file_events_are_reported(self):
        seen = []
        handler = SourceEventHandler(KEY, lambda key, path: seen.append((key, path)))
        handler.on_created(FileCreatedEvent("/share/a.raw"))
        handler.on_modified(FileModifiedEvent("/share/a.raw"))
        handler.on_moved(FileMovedEvent("/share/a.tmp", "/share/b.raw"))
        assert seen == [(KEY, "/share/a.raw"), (KEY, "/share/a.raw"), (KEY, "/share/b.raw")]

    def test_directory_events_ignored(self):
        seen = []
        handler = SourceEventHandler(KEY, lambda key, path: seen.append(path))
        handler.on_created(DirCreatedEvent("/share/sub"))
        assert seen == []

    def test_callback_errors_are_contained(self):
        def broken(key, path):
            raise RuntimeError("callback bug")

        SourceEventHandler(KEY, broken).on_created(FileCreatedEvent("/share/a.raw"))


@pytest.fixture
def seen():
    return []


@pytest.fixture
def watcher(seen):
    return SourceActivityWatcher(lambda key, path: seen.append((key, path)))


class TestSourceActivityWatcher:
    def test_watch_requires_start(self, watcher, tmp_path):
        assert watcher.watch(KEY, tmp_path) is False
        assert not watcher.is_running

    def test_reports_new_files(self, tmp_path):
        arrived = threading.Event()
        seen = []

        def _on_activity(key, path):
            seen.append((key, path))
            arrived.set()

        watcher = SourceActivityWatcher(_on_activity)
        watcher.start()
        try:
            assert watcher.watch(KEY, tmp_path)
            assert watcher.is_watching(KEY)
            write_file(tmp_path / "sub" / "a.raw")
            assert arrived.wait(5)
            assert {key for key, _ in seen} == {KEY}
            assert any(path.endswith("a.raw") for _, path in seen)
        finally:
            watcher.stop()
        assert not watcher.is_watching(KEY)

    def test_missing_path_is_not_fatal(self, watcher, tmp_path):
        watcher.start()
        try:
            assert watcher.watch(KEY, tmp_path / "offline") is False
            assert not watcher.is_watching(KEY)
        finally:
            watcher.stop()

    def test_unwatch(self, watcher, tmp_path):
        watcher.start()
        try:
            watcher.watch(KEY, tmp_path)
            watcher.unwatch(KEY)
            assert not watcher.is_watching(KEY)
            watcher.unwatch(KEY)
        finally:
            watcher.stop()
