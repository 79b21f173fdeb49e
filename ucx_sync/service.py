"""
Headless runner and background service support for UCX Sync.

Runs the orchestrator without any UI: progress lines go to the log file
and stderr, and a status summary is logged at a fixed interval.

**All platforms**: run in the foreground until Ctrl-C / SIGTERM:
    python -m ucx_sync run

**Windows**: host the runner as a Windows service via pywin32:
    python -m ucx_sync service install
    python -m ucx_sync service start
    python -m ucx_sync service stop
    python -m ucx_sync service remove
"""

from __future__ import annotations

import logging
import logging.handlers
import signal
import sys
import threading

from ucx_sync import __app_name__, __version__
from ucx_sync.config import Config, get_config_path, get_log_path
from ucx_sync.orchestrator import Orchestrator
from ucx_sync.platform_utils import IS_WINDOWS, format_bytes, free_bytes
from ucx_sync.registry import SourceRegistry
from ucx_sync.task import TaskStatus

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# ---- Windows service (pywin32) -----------------------------------------

_HAS_WIN32 = False
if IS_WINDOWS:
    try:
        import servicemanager  # type: ignore[import-untyped]
        import win32event  # type: ignore[import-untyped]
        import win32service  # type: ignore[import-untyped]
        import win32serviceutil  # type: ignore[import-untyped]
        _HAS_WIN32 = True
    except ImportError:
        pass


def setup_logging(cfg: Config, console: bool = True) -> None:
    """Install the rotating log file handler (and stderr) on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(cfg.log_level).upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    try:
        file_handler = logging.handlers.RotatingFileHandler(
            str(get_log_path()),
            maxBytes=cfg.max_log_size_mb * 1024 * 1024,
            backupCount=cfg.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as exc:
        print(f"WARNING: cannot open log file: {exc}", file=sys.stderr)

    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        root.addHandler(stream)


def format_status(row: TaskStatus) -> str:
    """Render one status row as a single log line."""
    progress = "--" if row.progress_percent is None else f"{row.progress_percent:.0f}%"
    last = row.last_activity.strftime("%H:%M:%S") if row.last_activity else "never"
    line = (
        f"[{row.node}][{row.share}] {row.share_alias:<6} {row.state:<11} "
        f"copied {row.files_copied}, failed {row.files_failed}, "
        f"progress {progress}, last activity {last}"
    )
    if row.detail:
        line += f" ({row.detail})"
    return line


def log_summary(orchestrator: Orchestrator) -> None:
    """Log one line per known source plus the capture counters."""
    rows = orchestrator.snapshot()
    logger.info(
        "Status: %d active task(s), %d source(s) seen",
        orchestrator.active_count, len(rows),
    )
    for row in rows:
        logger.info("  %s", format_status(row))
    s = orchestrator.capture_summary()
    logger.info(
        "Captures: %d complete (last %s), %d test (last %s), %d in flight",
        s.completed, s.last_capture or "-",
        s.completed_test, s.last_test_capture or "-",
        s.in_flight,
    )


def start_orchestrator(cfg: Config) -> Orchestrator:
    """Build and start an orchestrator from *cfg*."""
    if not cfg.is_configured():
        logger.error("Cannot start: project/destination not configured in %s", get_config_path())
        raise RuntimeError(f"{__app_name__} is not configured.")
    orchestrator = Orchestrator(cfg.to_settings())
    orchestrator.start()
    return orchestrator


def run_until(stop_event: threading.Event, cfg: Config) -> None:
    """Run the orchestrator until *stop_event* is set, logging status periodically."""
    orchestrator = start_orchestrator(cfg)
    try:
        while not stop_event.wait(cfg.status_interval):
            log_summary(orchestrator)
    finally:
        orchestrator.stop()
        log_summary(orchestrator)


# ======================================================================
# Commands
# ======================================================================

def run_foreground() -> int:
    """Run the sync engine in the foreground until SIGINT/SIGTERM."""
    cfg = Config()
    setup_logging(cfg)
    stop = threading.Event()

    def _handler(sig, frame):
        logger.info("Signal %s received, stopping.", sig)
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    print(f"{__app_name__} {__version__} running (press Ctrl-C to stop)…")
    try:
        run_until(stop, cfg)
    except RuntimeError as exc:
        print(f"ERROR: {exc}  Edit {get_config_path()} and set "
              "project_name and destination_root.")
        return 1
    print(f"{__app_name__} stopped.")
    return 0


def list_projects() -> int:
    """Scan every node/share for project folders and cache the result."""
    cfg = Config()
    logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)
    registry = SourceRegistry(cfg.nodes, cfg.shares, cfg.source_root_pattern)
    print(f"Scanning {len(registry)} source(s)…")
    projects = registry.find_available_projects()
    cfg.cached_projects = projects
    cfg.save()
    if not projects:
        print("No projects found.")
        return 1
    for name in projects:
        marker = "*" if name.lower() == cfg.project_name.lower() else " "
        print(f" {marker} {name}")
    return 0


def show_status() -> int:
    """Print the current configuration summary."""
    cfg = Config()
    settings = cfg.to_settings()
    free = free_bytes(settings.destination_dir) if cfg.destination_root else None
    print(f"{__app_name__} {__version__}")
    print(f"  Config file      : {get_config_path()}")
    print(f"  Log file         : {get_log_path()}")
    print(f"  Project          : {cfg.project_name or '(not set)'}")
    print(f"  Destination      : {cfg.destination_root or '(not set)'}")
    if free is not None:
        print(f"  Free space       : {format_bytes(free)}")
    print(f"  Sources          : {len(cfg.nodes)} node(s) x {len(cfg.shares)} share(s)"
          f" = {settings.source_count}")
    print(f"  Root pattern     : {cfg.source_root_pattern}")
    print(f"  Capture quorum   : {settings.capture_quorum}")
    print(f"  Idle timeout     : {settings.idle_timeout_minutes} min")
    print(f"  Parallel copies  : {settings.max_parallelism}")
    print(f"  Poll interval    : {settings.poll_interval_seconds} s")
    if cfg.cached_projects:
        print(f"  Known projects   : {', '.join(cfg.cached_projects)}")
    if not cfg.is_configured():
        print()
        print("Not configured: set project_name and destination_root.")
        return 1
    return 0


# ======================================================================
# Windows service
# ======================================================================

if _HAS_WIN32:

    class UCXSyncService(win32serviceutil.ServiceFramework):
        """Windows service implementation for UCX Sync."""

        _svc_name_ = "UCXSync"
        _svc_display_name_ = "UCX Sync"
        _svc_description_ = (
            "Replicates a capture project from every UCX worker node share "
            "into a local destination while the cluster is producing data."
        )

        def __init__(self, args):
            super().__init__(args)
            self._stop_handle = win32event.CreateEvent(None, 0, 0, None)
            self._stop = threading.Event()

        def SvcStop(self):
            self.ReportServiceStatus(win32service.SERVICE_STOP_PENDING)
            self._stop.set()
            win32event.SetEvent(self._stop_handle)
            logger.info("Service stop requested.")

        def SvcDoRun(self):
            servicemanager.LogMsg(
                servicemanager.EVENTLOG_INFORMATION_TYPE,
                servicemanager.PYS_SERVICE_STARTED,
                (self._svc_name_, ""),
            )
            cfg = Config()
            setup_logging(cfg, console=False)
            try:
                run_until(self._stop, cfg)
            except Exception as exc:
                logger.exception("Service error: %s", exc)
                servicemanager.LogErrorMsg(f"UCX Sync error: {exc}")
            logger.info("Service stopped.")


def service_main(args: list[str]) -> int:
    """Handle ``service install|start|stop|remove`` on Windows."""
    if not IS_WINDOWS:
        print("Service mode is only available on Windows; use 'run' instead.")
        return 1
    if not _HAS_WIN32:
        print("ERROR: pywin32 is required for service mode on Windows.")
        print("       pip install pywin32")
        return 1
    if not args:
        # Launched by the service control manager
        servicemanager.Initialize()
        servicemanager.PrepareToHostSingle(UCXSyncService)
        servicemanager.StartServiceCtrlDispatcher()
        return 0
    win32serviceutil.HandleCommandLine(UCXSyncService, argv=[sys.argv[0], *args])
    return 0


def show_help() -> None:
    print(f"{__app_name__} {__version__}: multi-source project sync")
    print()
    print("Usage:")
    print("  python -m ucx_sync run          Run in the foreground (Ctrl-C to stop)")
    print("  python -m ucx_sync projects     List projects found on the sources")
    print("  python -m ucx_sync status       Show the current configuration")
    if IS_WINDOWS:
        print("  python -m ucx_sync service install|start|stop|remove")
        print("                                 Manage the Windows service")
