"""Source activity watcher for UCX Sync.

Uses the watchdog library to receive change notifications from source
project roots.  Notifications only hint that new data has arrived so the
orchestrator can poll early; the regular poll stays authoritative, since
many network shares deliver no events at all.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable
from pathlib import Path
from typing import Any

from watchdog.events import (
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class SourceEventHandler(FileSystemEventHandler):
    """Watchdog handler that reports file activity below one source root."""

    def __init__(self, key: Hashable, on_activity: Callable[[Hashable, str], None]):
        super().__init__()
        self._key = key
        self._on_activity = on_activity

    def _report(self, path: str) -> None:
        try:
            self._on_activity(self._key, path)
        except Exception:
            logger.exception("Error in source activity callback for %s", path)

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        """Handle a new file creation event."""
        if not event.is_directory:
            self._report(event.src_path)

    def on_modified(self, event: FileModifiedEvent) -> None:  # type: ignore[override]
        """Handle a file modification event."""
        if not event.is_directory:
            self._report(event.src_path)

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        """Handle a rename into place (common for producers writing temp files)."""
        if not event.is_directory:
            self._report(event.dest_path)


class SourceActivityWatcher:
    """Watches any number of source roots with a single watchdog observer.

    Usage:
        watcher = SourceActivityWatcher(on_activity)
        watcher.start()
        watcher.watch(key, path)
        ...
        watcher.stop()
    """

    def __init__(self, on_activity: Callable[[Hashable, str], None]):
        self._on_activity = on_activity
        self._observer: Any | None = None
        self._watches: dict[Hashable, Any] = {}
        self._lock = threading.Lock()

    # ---- lifecycle ----

    def start(self) -> None:
        """Start the observer thread."""
        if self._observer is not None:
            return
        observer = Observer()
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info("Source activity watcher started.")

    def stop(self) -> None:
        """Stop watching and release resources."""
        with self._lock:
            self._watches.clear()
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        logger.info("Source activity watcher stopped.")

    @property
    def is_running(self) -> bool:
        """Return whether the observer is currently active."""
        return self._observer is not None and self._observer.is_alive()

    # ---- watches ----

    def watch(self, key: Hashable, path: str | Path) -> bool:
        """
        Watch *path* recursively on behalf of *key*.

        Returns True if a watch is in place.  Failures (shares without
        change notification support, vanished paths) are logged and
        reported as False.
        """
        if self._observer is None:
            return False
        with self._lock:
            if key in self._watches:
                return True
        handler = SourceEventHandler(key, self._on_activity)
        try:
            watch = self._observer.schedule(handler, str(path), recursive=True)
        except (OSError, RuntimeError) as exc:
            logger.warning("Cannot watch %s: %s", path, exc)
            return False
        with self._lock:
            self._watches[key] = watch
        logger.debug("Watching %s for %s", path, key)
        return True

    def unwatch(self, key: Hashable) -> None:
        """Drop the watch held for *key*, if any."""
        with self._lock:
            watch = self._watches.pop(key, None)
        if watch is not None and self._observer is not None:
            try:
                self._observer.unschedule(watch)
            except (KeyError, OSError, RuntimeError) as exc:
                logger.debug("Unschedule of %s failed: %s", key, exc)

    def is_watching(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._watches
