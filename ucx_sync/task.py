"""
Per-source sync task for UCX Sync.

A :class:`SyncTask` owns one transfer attempt for one node/share: it
scans the source project tree, copies whatever is due, and ends in a
terminal state.  The orchestrator creates a fresh task for the same
source on a later poll. Copied-file and copied-byte totals, and the time
of the last real activity, are carried over from the task it replaces so
the status view only ever counts up and never shows a rescan as activity.

Lifecycle::

    Pending -> Scanning -> Copying -> Completed
       any non-terminal  -> IdleStopped | Cancelled | Failed
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from ucx_sync.captures import CaptureCompletionTracker
from ucx_sync.copier import CopyRecord, FileDiffCopier, FileRecord
from ucx_sync.governor import GovernorAction, ResourceGovernor
from ucx_sync.platform_utils import format_bytes
from ucx_sync.registry import SourceKey, SourceRoot, share_alias
from ucx_sync.retry import RetryPolicy, TransferCancelled

logger = logging.getLogger(__name__)

# Seconds between free-space checks while copying.
SPACE_CHECK_INTERVAL = 5.0


class TaskState(enum.Enum):
    PENDING = "Pending"
    SCANNING = "Scanning"
    COPYING = "Copying"
    COMPLETED = "Completed"
    IDLE_STOPPED = "IdleStopped"
    CANCELLED = "Cancelled"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {TaskState.COMPLETED, TaskState.IDLE_STOPPED, TaskState.CANCELLED, TaskState.FAILED}
)


@dataclass
class TaskCounters:
    """Cumulative transfer counters, updated from copy worker threads."""
    total_bytes: int = 0
    copied_bytes: int = 0
    total_files: int = 0
    copied_files: int = 0
    failed_files: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_copied(self, size: int) -> None:
        with self._lock:
            self.copied_files += 1
            self.copied_bytes += size

    def record_failed(self) -> None:
        with self._lock:
            self.failed_files += 1

    def set_totals(self, files: int, size: int) -> None:
        with self._lock:
            self.total_files = files
            self.total_bytes = size

    def byte_progress(self) -> tuple[int, int]:
        """Return (total_bytes, copied_bytes) as one consistent pair."""
        with self._lock:
            return self.total_bytes, self.copied_bytes

    def marker(self) -> tuple[int, int, int]:
        """Snapshot used to tell whether anything moved between polls."""
        with self._lock:
            return self.copied_files, self.copied_bytes, self.failed_files


@dataclass(frozen=True)
class TaskStatus:
    """Read-only view of one source for the status display."""
    node: str
    share: str
    share_alias: str
    state: str
    last_activity: datetime | None
    files_copied: int
    files_failed: int
    progress_percent: float | None
    detail: str = ""


class SyncTask:
    """
    One transfer attempt for one source.

    Parameters
    ----------
    root : SourceRoot
        Resolved project directory on the source.
    dest_dir : Path
        Local directory the project is replicated into.
    governor : ResourceGovernor
        Consulted after scanning and periodically while copying.
    tracker : CaptureCompletionTracker, optional
        Told about every copied file.
    max_parallelism : int
        Concurrent file copies.
    retry : RetryPolicy, optional
        Per-file retry policy.
    predecessor : SyncTask, optional
        Task this one replaces; its copied totals are carried over.
    log : callable, optional
        Sink for human-readable progress lines.
    clock : callable
        Wall-clock source (seconds since the epoch).
    """

    def __init__(
        self,
        root: SourceRoot,
        dest_dir: str | Path,
        governor: ResourceGovernor,
        tracker: CaptureCompletionTracker | None = None,
        max_parallelism: int = 8,
        retry: RetryPolicy | None = None,
        predecessor: SyncTask | None = None,
        log: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.key: SourceKey = root.key
        self.root = root
        self.dest_dir = Path(dest_dir)
        self._governor = governor
        self._tracker = tracker
        self._max_parallelism = max(1, max_parallelism)
        self._log = log
        self._clock = clock
        self._copier = FileDiffCopier(retry=retry, on_progress=self._on_bytes)

        self.state = TaskState.PENDING
        self.created = clock()
        self.last_activity = self.created
        self.heartbeat = self.created
        self.latest_source_mtime = 0.0
        self.detail = ""
        self.counters = TaskCounters()
        self.cancel_event = threading.Event()
        self._baseline_bytes = 0
        self._last_space_check = float("-inf")
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

        if predecessor is not None:
            prev = predecessor.counters
            self.counters.copied_files = prev.copied_files
            self.counters.copied_bytes = prev.copied_bytes
            self._baseline_bytes = prev.copied_bytes
            self.latest_source_mtime = predecessor.latest_source_mtime
            self.last_activity = predecessor.last_activity

    # ---- lifecycle ----

    def start(self) -> None:
        """Run the task on its own worker thread."""
        if self._thread is not None:
            raise RuntimeError(f"Task {self.key} already started")
        self._thread = threading.Thread(
            target=self.run, daemon=True, name=f"Sync-{self.key}"
        )
        self._thread.start()

    def run(self) -> None:
        """Scan and copy once, ending in a terminal state.  Never raises."""
        try:
            if not self._transition(TaskState.SCANNING):
                return
            self.dest_dir.mkdir(parents=True, exist_ok=True)
            records = list(
                self._copier.scan(
                    self.root.path,
                    self.dest_dir,
                    cancel=self.cancel_event,
                    on_directory=self._on_directory,
                    on_source_mtime=self._on_source_mtime,
                )
            )
            total_bytes = sum(r.size for r in records)
            self.counters.set_totals(len(records), total_bytes)

            if records and not self._governor.can_start(self.dest_dir, total_bytes):
                self.request_stop(TaskState.CANCELLED, "low disk space")
                return

            due = f"{len(records)} file(s) due, {format_bytes(total_bytes)}"
            if not self._transition(TaskState.COPYING, due, announce=bool(records)):
                return
            result = self._copier.copy_all(
                records,
                self.dest_dir,
                max_parallelism=self._max_parallelism,
                cancel=self.cancel_event,
                on_result=self._on_result,
                checkpoint=self._checkpoint,
            )
            self._transition(
                TaskState.COMPLETED,
                f"{result.copied_files} copied, {result.failed_files} failed",
            )
        except TransferCancelled:
            self._finish_cancelled()
        except Exception as exc:
            logger.exception("%s Sync error", self.key.label)
            self.mark_failed(str(exc) or exc.__class__.__name__)

    def request_stop(self, state: TaskState = TaskState.CANCELLED, reason: str = "") -> bool:
        """
        Move the task straight to terminal *state* and signal cancellation.

        In-flight copies finish at their next file boundary.  Returns False
        if the task had already ended.
        """
        with self._lock:
            if self.state.is_terminal:
                return False
            self.state = state
            self.detail = reason
        self.cancel_event.set()
        self._say(f"{state.value}: {reason}" if reason else state.value)
        return True

    def mark_failed(self, error: str) -> None:
        with self._lock:
            if self.state.is_terminal:
                return
            self.state = TaskState.FAILED
            self.detail = error
        self.cancel_event.set()
        self._say(f"Failed: {error}")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker thread; return True once it has exited."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    # ---- queries ----

    @property
    def started(self) -> bool:
        return self._thread is not None

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def progress_percent(self) -> float | None:
        total, copied = self.counters.byte_progress()
        copied -= self._baseline_bytes
        if total <= 0:
            return None
        return max(0.0, min(100.0, copied * 100.0 / total))

    def status(self) -> TaskStatus:
        last = self.last_activity
        return TaskStatus(
            node=self.key.node,
            share=self.key.share,
            share_alias=share_alias(self.key.share),
            state=self.state.value,
            last_activity=datetime.fromtimestamp(last) if last else None,
            files_copied=self.counters.copied_files,
            files_failed=self.counters.failed_files,
            progress_percent=self.progress_percent,
            detail=self.detail,
        )

    # ---- internals ----

    def _transition(self, new: TaskState, note: str = "", announce: bool = True) -> bool:
        with self._lock:
            if self.state.is_terminal:
                return False
            self.state = new
        if announce:
            self._say(f"{new.value}: {note}" if note else new.value)
        else:
            logger.debug("%s -> %s", self.key.label, new.value)
        return True

    def _finish_cancelled(self) -> None:
        with self._lock:
            if not self.state.is_terminal:
                self.state = TaskState.CANCELLED
        logger.info("%s Transfer cancelled (%s)", self.key.label, self.state.value)

    def _say(self, message: str) -> None:
        line = f"{self.key.label} {message}"
        logger.info("%s", line)
        if self._log is not None:
            try:
                self._log(line)
            except Exception:
                logger.exception("Error in log sink")

    def _touch_heartbeat(self) -> None:
        self.heartbeat = self._clock()

    def _on_directory(self, _path: Path) -> None:
        self._touch_heartbeat()

    def _on_bytes(self, _count: int) -> None:
        self._touch_heartbeat()

    def _on_source_mtime(self, mtime: float) -> None:
        if mtime > self.latest_source_mtime:
            self.latest_source_mtime = mtime
            self.last_activity = self._clock()

    def _checkpoint(self) -> None:
        """Runs before every copy attempt on a copy worker thread."""
        self._touch_heartbeat()
        if self.cancel_event.is_set():
            raise TransferCancelled()
        now = time.monotonic()
        with self._lock:
            due = now - self._last_space_check >= SPACE_CHECK_INTERVAL
            if due:
                self._last_space_check = now
        if due and self._governor.check_during_transfer(self.dest_dir) is GovernorAction.ABORT_LOW_SPACE:
            self.request_stop(TaskState.CANCELLED, "low disk space")
            raise TransferCancelled()

    def _on_result(self, record: FileRecord, rec: CopyRecord) -> None:
        if rec.success:
            self.counters.record_copied(record.size)
            self.last_activity = self._clock()
            if self._tracker is not None:
                self._tracker.on_file_copied(record.name, self.key)
        else:
            self.counters.record_failed()
            self._say(f"Failed to copy {record.relative_path}: {rec.error}")
