"""
Sync orchestrator for UCX Sync.

Runs the control loop: every poll it walks the registered sources,
reaps tasks that have ended, stops tasks that went idle, and starts a
fresh task for each source that currently exposes the project and has
none running, subject to the resource governor.  The status snapshot
and capture counters can be read at any time from any thread.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from pathlib import Path

from ucx_sync.captures import CaptureCompleted, CaptureCompletionTracker
from ucx_sync.config import SyncSettings
from ucx_sync.governor import ResourceGovernor
from ucx_sync.registry import SourceKey, SourceRegistry, SourceRoot
from ucx_sync.retry import RetryPolicy, linear_backoff
from ucx_sync.task import SyncTask, TaskState, TaskStatus
from ucx_sync.watcher import SourceActivityWatcher

logger = logging.getLogger(__name__)

# Minimum seconds between two polls when woken early by source events.
MIN_POLL_GAP = 5.0


@dataclass(frozen=True)
class CaptureSummary:
    completed: int
    completed_test: int
    last_capture: str | None
    last_test_capture: str | None
    in_flight: int


class Orchestrator:
    """
    Top-level control loop.

    Parameters
    ----------
    settings : SyncSettings
        Immutable run configuration.
    log : callable, optional
        Sink receiving one human-readable line per notable event.
    registry, governor, tracker : optional
        Collaborators; built from *settings* when omitted.
    free_space : callable, optional
        Free-space function handed to the default governor.
    clock : callable
        Wall-clock source shared with every task.
    """

    def __init__(
        self,
        settings: SyncSettings,
        log: Callable[[str], None] | None = None,
        registry: SourceRegistry | None = None,
        governor: ResourceGovernor | None = None,
        tracker: CaptureCompletionTracker | None = None,
        free_space: Callable[[str | Path], int | None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.registry = registry or SourceRegistry.from_settings(settings)
        self.governor = governor or ResourceGovernor(
            max_active=len(self.registry),
            safety_margin=settings.safety_margin_bytes,
            min_free=settings.min_free_bytes,
            free_space=free_space,
        )
        self.tracker = tracker or CaptureCompletionTracker(settings.capture_quorum)
        self.tracker.add_listener(self._on_capture_completed)
        self._retry = RetryPolicy(
            max_attempts=settings.retry_attempts,
            backoff=linear_backoff(settings.retry_delay_seconds),
        )
        self._log = log
        self._clock = clock

        self._tasks: dict[SourceKey, SyncTask] = {}
        self._retired: dict[SourceKey, SyncTask] = {}
        self._markers: dict[SourceKey, tuple[int, int, int]] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._watcher = (
            SourceActivityWatcher(self._on_source_activity) if settings.watch_sources else None
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the control loop on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        s = self.settings
        if not s.project_name or not s.destination_root:
            raise RuntimeError("UCX Sync is not configured (project/destination missing).")

        s.destination_dir.mkdir(parents=True, exist_ok=True)
        if s.capture_quorum != len(self.registry):
            logger.warning(
                "Capture quorum is %d but %d sources are registered; "
                "check expected_capture_sources.",
                s.capture_quorum, len(self.registry),
            )
        self._stop.clear()
        self._wake.clear()
        if self._watcher is not None:
            self._watcher.start()
        self._thread = threading.Thread(target=self._run, daemon=True, name="Orchestrator")
        self._thread.start()
        self._emit(
            f"Sync of project '{s.project_name}' to {s.destination_dir} started "
            f"({len(self.registry)} sources, {s.max_parallelism} copies per source)"
        )

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel every task, wait up to *timeout* seconds, then clear state."""
        self._stop.set()
        self._wake.set()
        deadline = time.monotonic() + timeout
        if self._thread is not None:
            self._thread.join(max(0.0, deadline - time.monotonic()))
            self._thread = None

        with self._lock:
            live = list(self._tasks.values())
            winding_down = [t for t in self._retired.values() if t.is_alive]
        for task in live:
            task.request_stop(TaskState.CANCELLED, "sync stopped")
        for task in live + winding_down:
            if not task.join(max(0.0, deadline - time.monotonic())):
                logger.warning("%s did not stop within %.0fs", task.key.label, timeout)

        if self._watcher is not None:
            self._watcher.stop()
        with self._lock:
            self._tasks.clear()
            self._retired.clear()
            self._markers.clear()
        self._emit("Sync stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self.poll_once()
            except Exception:
                logger.exception("Error in sync loop")
            self._wake.wait(self.settings.poll_interval_seconds)
            self._wake.clear()
            gap = MIN_POLL_GAP - (time.monotonic() - started)
            if gap > 0:
                self._stop.wait(gap)

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    def poll_once(self) -> None:
        """Run one pass over every registered source."""
        now = self._clock()
        for key in self.registry.keys:
            if self._stop.is_set():
                return
            with self._lock:
                task = self._tasks.get(key)
            if task is not None and self._keep_task(key, task, now):
                continue
            self._maybe_start(key)

    def _keep_task(self, key: SourceKey, task: SyncTask, now: float) -> bool:
        """Return True if *task* stays live; otherwise reap it."""
        if not task.is_terminal and task.started and not task.is_alive:
            task.mark_failed("worker exited unexpectedly")

        if not task.is_terminal:
            marker = task.counters.marker()
            with self._lock:
                previous = self._markers.get(key)
                self._markers[key] = marker
            timeout = self.settings.idle_timeout_seconds
            idle_for = now - task.last_activity
            if (
                idle_for >= timeout
                and now - task.heartbeat >= timeout
                and marker == previous
            ):
                task.request_stop(
                    TaskState.IDLE_STOPPED, f"no activity for {idle_for / 60:.1f} min"
                )
            else:
                return True

        self._reap(key, task)
        return False

    def _reap(self, key: SourceKey, task: SyncTask) -> None:
        with self._lock:
            if self._tasks.get(key) is task:
                del self._tasks[key]
            self._retired[key] = task
            self._markers.pop(key, None)
        logger.debug("%s reaped in state %s", key.label, task.state.value)

    def _maybe_start(self, key: SourceKey) -> None:
        with self._lock:
            previous = self._retired.get(key)
        if previous is not None and previous.is_alive:
            # Still finishing in-flight copies after a stop
            return

        root = self.registry.resolve(key, self.settings.project_name)
        if root is None:
            self._unwatch(key)
            return
        self._watch(key, root)

        with self._lock:
            active = len(self._tasks)
        if not self.governor.can_admit_more(active):
            return
        dest_dir = self.settings.destination_dir
        if not self.governor.can_start(dest_dir):
            self._emit(f"{key.label} Insufficient disk space, skipping")
            return

        task = SyncTask(
            root,
            dest_dir,
            self.governor,
            tracker=self.tracker,
            max_parallelism=self.settings.max_parallelism,
            retry=self._retry,
            predecessor=previous,
            log=self._to_sink,
            clock=self._clock,
        )
        with self._lock:
            if key in self._tasks or not self.governor.can_admit_more(len(self._tasks)):
                return
            self._tasks[key] = task
            self._markers[key] = task.counters.marker()
            self._retired.pop(key, None)
        task.start()

        if previous is None or previous.state is not TaskState.COMPLETED:
            self._emit(f"{key.label} Project found, sync started")
        else:
            logger.debug("%s new pass started", key.label)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def snapshot(self) -> list[TaskStatus]:
        """
        Return one status row per source that has had a task this session.

        Live tasks report their current state; sources between tasks
        report the last state their previous task reached.
        """
        with self._lock:
            live = dict(self._tasks)
            retired = dict(self._retired)
        rows = []
        for key in self.registry.keys:
            task = live.get(key) or retired.get(key)
            if task is not None:
                rows.append(task.status())
        return rows

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._tasks)

    def task_for(self, key: SourceKey) -> SyncTask | None:
        """Return the live task for *key*, if any."""
        with self._lock:
            return self._tasks.get(key)

    def capture_summary(self) -> CaptureSummary:
        t = self.tracker
        return CaptureSummary(
            completed=t.completed_count,
            completed_test=t.completed_test_count,
            last_capture=t.last_capture,
            last_test_capture=t.last_test_capture,
            in_flight=t.in_flight,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _watch(self, key: SourceKey, root: SourceRoot) -> None:
        if self._watcher is not None and not self._watcher.is_watching(key):
            self._watcher.watch(key, root.path)

    def _unwatch(self, key: SourceKey) -> None:
        if self._watcher is not None:
            self._watcher.unwatch(key)

    def _on_source_activity(self, key: Hashable, path: str) -> None:
        """Called from the watchdog thread for every source file event."""
        with self._lock:
            live = key in self._tasks
        if not live:
            logger.debug("Activity on idle source %s: %s", key, path)
            self._wake.set()

    def _on_capture_completed(self, event: CaptureCompleted) -> None:
        self._to_sink(event.describe())

    def _emit(self, message: str) -> None:
        logger.info("%s", message)
        self._to_sink(message)

    def _to_sink(self, message: str) -> None:
        if self._log is None:
            return
        try:
            self._log(message)
        except Exception:
            logger.exception("Error in log sink")
