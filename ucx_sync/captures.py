"""
Capture completion tracking for UCX Sync.

Every exposure ("capture") taken by the camera cluster leaves one raw
file on each worker node, named after a fixed convention::

    Lvl0X-00042-T-Test1-00-00-AA66B5AD_9209_4D88_A41B_DFFD3CD97D40.raw
    |     |     | |     |  |  |
    |     |     | |     |  |  session id ([A-F0-9_]+)
    |     |     | |     sub-indices (digits)
    |     |     | project token
    |     |     optional test marker "T-"
    |     capture id (digits)
    level/type token (Lvl<digits>X)

The tracker records which sources have delivered a file for each
capture id and announces a capture exactly once, when every expected
source has delivered.  Only captures still in flight are held in memory.
"""

import logging
import re
import threading
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CAPTURE_FILE_PATTERN = re.compile(
    r"^(?P<level>Lvl\d+X)-(?P<capture>\d+)-(?P<test>T-)?(?P<project>[^-]+)"
    r"-(?P<sub1>\d+)-(?P<sub2>\d+)-(?P<session>[A-F0-9_]+)\.raw$",
    re.IGNORECASE,
)

DEFAULT_HISTORY = 4096


@dataclass(frozen=True)
class CaptureInfo:
    """Fields parsed out of a capture file name."""
    level: str
    capture_id: str
    is_test: bool
    project: str
    session_id: str

    @property
    def key(self) -> str:
        """Normalised capture key; test captures never collide with production."""
        return f"T-{self.capture_id}" if self.is_test else self.capture_id


def parse_capture_name(file_name: str) -> CaptureInfo | None:
    """Return the capture fields of *file_name*, or None if it is not a capture file."""
    m = CAPTURE_FILE_PATTERN.match(file_name)
    if m is None:
        return None
    return CaptureInfo(
        level=m.group("level"),
        capture_id=m.group("capture"),
        is_test=m.group("test") is not None,
        project=m.group("project"),
        session_id=m.group("session"),
    )


def extract_capture_key(file_name: str) -> str | None:
    """Return the normalised capture key of *file_name*, or None."""
    info = parse_capture_name(file_name)
    return info.key if info else None


@dataclass(frozen=True)
class CaptureCompleted:
    """Announcement that a capture arrived from every expected source."""
    key: str
    info: CaptureInfo
    sources: int
    total_completed: int

    @property
    def is_test(self) -> bool:
        return self.info.is_test

    def describe(self) -> str:
        kind = "Test capture" if self.is_test else "Capture"
        counter = "test total" if self.is_test else "total"
        return (
            f"{kind} #{self.info.capture_id} of project '{self.info.project}' complete "
            f"({self.sources}/{self.sources} sources) [{counter}: {self.total_completed}]"
        )


class CaptureCompletionTracker:
    """
    Quorum tracker keyed by capture.

    Parameters
    ----------
    expected_sources : int
        Number of distinct sources that must deliver before a capture is
        complete (the size of the registry, not the sources online now).
    history : int
        How many completed keys are remembered, so that late duplicates
        neither reopen nor re-announce a capture.
    """

    def __init__(self, expected_sources: int, history: int = DEFAULT_HISTORY):
        if expected_sources < 1:
            raise ValueError("expected_sources must be at least 1")
        self.expected_sources = expected_sources
        self._history_size = max(1, history)
        self._pending: dict[str, set[Hashable]] = {}
        self._completed: OrderedDict[str, None] = OrderedDict()
        self._listeners: list[Callable[[CaptureCompleted], None]] = []
        self._lock = threading.Lock()
        self.completed_count = 0
        self.completed_test_count = 0
        self.last_capture: str | None = None
        self.last_test_capture: str | None = None

    def add_listener(self, callback: Callable[[CaptureCompleted], None]) -> None:
        """Register *callback* for completion announcements."""
        self._listeners.append(callback)

    def on_file_copied(self, file_name: str, source: Hashable) -> CaptureCompleted | None:
        """
        Record that *source* delivered *file_name*.

        Returns the completion event if this delivery completed a capture.
        Names that do not follow the capture grammar are ignored.
        """
        info = parse_capture_name(file_name)
        if info is None:
            return None
        key = info.key
        with self._lock:
            if key in self._completed:
                return None
            delivered = self._pending.setdefault(key, set())
            delivered.add(source)
            if len(delivered) < self.expected_sources:
                return None
            del self._pending[key]
            self._remember(key)
            if info.is_test:
                self.completed_test_count += 1
                self.last_test_capture = info.capture_id
                total = self.completed_test_count
            else:
                self.completed_count += 1
                self.last_capture = info.capture_id
                total = self.completed_count
            event = CaptureCompleted(
                key=key, info=info, sources=self.expected_sources, total_completed=total,
            )

        logger.info("%s", event.describe())
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception("Error in capture completion listener")
        return event

    def _remember(self, key: str) -> None:
        self._completed[key] = None
        while len(self._completed) > self._history_size:
            self._completed.popitem(last=False)

    def is_complete(self, key: str) -> bool:
        """Return True once *key* has been delivered by every expected source."""
        with self._lock:
            return key in self._completed

    def delivered(self, key: str) -> frozenset:
        """Return the sources that have delivered *key* so far (empty once complete)."""
        with self._lock:
            return frozenset(self._pending.get(key, ()))

    def __contains__(self, key: object) -> bool:
        """True while *key* is still being tracked (not yet complete)."""
        with self._lock:
            return key in self._pending

    @property
    def in_flight(self) -> int:
        """Number of captures with at least one but not all deliveries."""
        with self._lock:
            return len(self._pending)
