"""
File diff and copy engine for UCX Sync.

Scans one source project tree against the destination, decides file by
file whether a copy is needed (missing, size mismatch, or source newer
than the destination beyond a small tolerance), and copies the due
files with bounded parallelism and per-file retry.  One failing file
never stops the rest of the batch.
"""

import logging
import os
import shutil
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path

from ucx_sync.retry import RetryPolicy, TransferCancelled, linear_backoff

logger = logging.getLogger(__name__)

_COPY_CHUNK = 1024 * 1024  # 1 MiB read chunks

# Destination mtimes this much older than the source still count as in sync
# (FAT32 and some SMB servers store 2-second timestamps).
MTIME_TOLERANCE = 2.0

# Directory names never descended into (compared case-insensitively).
EXCLUDED_DIRS = frozenset(
    name.lower()
    for name in (
        "System Volume Information",
        "RECYCLER",
        "RECYCLED",
        "$RECYCLE.BIN",
        ".git",
        ".svn",
        "node_modules",
    )
)


def is_excluded_dir(name: str) -> bool:
    """Return True for system/reserved directory names."""
    return name.lower() in EXCLUDED_DIRS


def needs_copy(size: int, mtime: float, dest_path: Path) -> bool:
    """
    Decide whether a source file of *size* bytes modified at *mtime*
    must be copied over *dest_path*.
    """
    try:
        st = dest_path.stat()
    except FileNotFoundError:
        return True
    except OSError:
        # Can't tell; copying is the safe answer.
        return True
    if st.st_size != size:
        return True
    return st.st_mtime < mtime - MTIME_TOLERANCE


@dataclass(frozen=True)
class FileRecord:
    """A source file that is due for copying."""
    source_path: Path
    relative_path: Path
    size: int
    source_mtime: float

    @property
    def name(self) -> str:
        return self.source_path.name


@dataclass
class CopyRecord:
    """Outcome of copying one file."""
    source: str
    destination: str
    size_bytes: int = 0
    started: float = 0.0
    finished: float = 0.0
    attempts: int = 0
    success: bool = False
    error: str = ""

    @property
    def duration(self) -> float:
        if self.finished and self.started:
            return self.finished - self.started
        return 0.0


@dataclass
class CopyResult:
    """Totals of one :meth:`FileDiffCopier.copy_all` batch."""
    copied_files: int = 0
    copied_bytes: int = 0
    failed_files: int = 0

    def add(self, rec: CopyRecord) -> None:
        if rec.success:
            self.copied_files += 1
            self.copied_bytes += rec.size_bytes
        else:
            self.failed_files += 1


class FileDiffCopier:
    """
    Diffs and copies one source tree into a destination tree.

    Parameters
    ----------
    retry : RetryPolicy, optional
        Per-file retry policy; defaults to three attempts with a linear
        ``attempt * 1s`` backoff.
    on_progress : callable, optional
        Called with a byte count after every chunk written.  Used as a
        liveness signal; it runs on copy worker threads.
    """

    def __init__(
        self,
        retry: RetryPolicy | None = None,
        on_progress: Callable[[int], None] | None = None,
    ):
        self.retry = retry or RetryPolicy(max_attempts=3, backoff=linear_backoff(1.0))
        self._on_progress = on_progress

    # ---- scan ----

    def scan(
        self,
        source_root: str | Path,
        dest_root: str | Path,
        cancel: threading.Event | None = None,
        on_directory: Callable[[Path], None] | None = None,
        on_source_mtime: Callable[[float], None] | None = None,
    ) -> Iterator[FileRecord]:
        """
        Yield a :class:`FileRecord` for every source file that needs copying.

        The walk is lazy and single-use.  Unreadable subdirectories are
        skipped; an unreadable *source_root* raises.  *on_source_mtime*
        sees the mtime of every source file, due or not.
        """
        source_root = Path(source_root)
        dest_root = Path(dest_root)
        stack = [source_root]
        while stack:
            if cancel is not None and cancel.is_set():
                raise TransferCancelled()
            current = stack.pop()
            if on_directory is not None:
                on_directory(current)
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except (PermissionError, FileNotFoundError) as exc:
                if current == source_root:
                    raise
                logger.debug("Skipping unreadable directory %s: %s", current, exc)
                continue

            subdirs = []
            for entry in entries:
                try:
                    if entry.is_dir(follow_symlinks=False):
                        if not is_excluded_dir(entry.name):
                            subdirs.append(Path(entry.path))
                        continue
                    if not entry.is_file():
                        continue
                    st = entry.stat()
                except OSError as exc:
                    logger.debug("Skipping %s: %s", entry.path, exc)
                    continue

                if on_source_mtime is not None:
                    on_source_mtime(st.st_mtime)
                source_path = Path(entry.path)
                relative = source_path.relative_to(source_root)
                if needs_copy(st.st_size, st.st_mtime, dest_root / relative):
                    yield FileRecord(
                        source_path=source_path,
                        relative_path=relative,
                        size=st.st_size,
                        source_mtime=st.st_mtime,
                    )
            # Reverse so the walk visits directories in listing order
            stack.extend(reversed(subdirs))

    # ---- copy ----

    def copy_all(
        self,
        records: Iterable[FileRecord],
        dest_root: str | Path,
        max_parallelism: int = 8,
        cancel: threading.Event | None = None,
        on_result: Callable[[FileRecord, CopyRecord], None] | None = None,
        checkpoint: Callable[[], None] | None = None,
    ) -> CopyResult:
        """
        Copy *records* into *dest_root* using up to *max_parallelism* threads.

        Each file is retried according to :attr:`retry`; a file that still
        fails is counted in ``failed_files`` and the batch carries on.
        *checkpoint* runs before every attempt and may raise
        :class:`TransferCancelled`.  *on_result* is called on the worker
        thread as soon as each file finishes.

        Raises :class:`TransferCancelled` (after in-flight copies finish)
        when *cancel* is set.
        """
        dest_root = Path(dest_root)
        workers = max(1, int(max_parallelism))
        result = CopyResult()
        pending: set[Future] = set()
        cancelled = False

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="Copy") as pool:
            try:
                for record in records:
                    if cancel is not None and cancel.is_set():
                        break
                    if len(pending) >= workers:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        cancelled |= self._collect(done, result)
                        if cancel is not None and cancel.is_set():
                            break
                    pending.add(
                        pool.submit(self._copy_one, record, dest_root, cancel, checkpoint, on_result)
                    )
            finally:
                done, _ = wait(pending)
                cancelled |= self._collect(done, result)

        if cancelled or (cancel is not None and cancel.is_set()):
            raise TransferCancelled()
        return result

    @staticmethod
    def _collect(done: Iterable[Future], result: CopyResult) -> bool:
        """Fold finished futures into *result*; return True if any was cancelled."""
        cancelled = False
        for fut in done:
            try:
                result.add(fut.result())
            except TransferCancelled:
                cancelled = True
        return cancelled

    def _copy_one(
        self,
        record: FileRecord,
        dest_root: Path,
        cancel: threading.Event | None,
        checkpoint: Callable[[], None] | None,
        on_result: Callable[[FileRecord, CopyRecord], None] | None,
    ) -> CopyRecord:
        dest = dest_root / record.relative_path
        rec = CopyRecord(
            source=str(record.source_path),
            destination=str(dest),
            size_bytes=record.size,
            started=time.time(),
        )

        def _attempt() -> None:
            if checkpoint is not None:
                checkpoint()
            rec.attempts += 1
            dest.parent.mkdir(parents=True, exist_ok=True)
            self._copy_file(record.source_path, dest)

        try:
            self.retry.run(_attempt, cancel=cancel)
            rec.success = True
            rec.finished = time.time()
            logger.debug(
                "Copied %s (%d bytes) in %.1fs", record.relative_path, record.size, rec.duration,
            )
        except TransferCancelled:
            raise
        except OSError as exc:
            rec.error = str(exc)
            rec.finished = time.time()
            logger.error(
                "Failed to copy %s after %d attempt(s): %s",
                record.relative_path, rec.attempts, exc,
            )

        if on_result is not None:
            try:
                on_result(record, rec)
            except Exception:
                logger.exception("Error in on_result callback for %s", record.relative_path)
        return rec

    def _copy_file(self, source: Path, dest: Path) -> None:
        """Copy *source* over *dest* and re-apply the source timestamps."""
        with open(source, "rb") as fsrc, open(dest, "wb") as fdst:
            while chunk := fsrc.read(_COPY_CHUNK):
                fdst.write(chunk)
                if self._on_progress is not None:
                    self._on_progress(len(chunk))
        shutil.copystat(source, dest)
