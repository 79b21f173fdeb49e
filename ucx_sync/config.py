"""Configuration management for UCX Sync.

Stores and retrieves user settings from a JSON config file in the
platform-appropriate application data directory, and freezes them into
the immutable :class:`SyncSettings` record consumed by the sync core.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ucx_sync.platform_utils import (
    default_source_root_pattern,
)
from ucx_sync.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from ucx_sync.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

MB = 1024 * 1024

DEFAULT_NODES = [
    "WU01", "WU02", "WU03", "WU04", "WU05", "WU06", "WU07",
    "WU08", "WU09", "WU10", "WU11", "WU12", "WU13", "CU",
]
DEFAULT_SHARES = ["E$", "F$"]

DEFAULT_CONFIG: dict[str, Any] = {
    "nodes": list(DEFAULT_NODES),
    "shares": list(DEFAULT_SHARES),
    "source_root_pattern": default_source_root_pattern(),
    "project_name": "",
    "destination_root": "",
    "cached_projects": [],
    # ---- scheduling ----
    "poll_interval_seconds": 30,
    "idle_timeout_minutes": 5,
    "max_parallelism": 8,
    # ---- disk space ----
    "safety_margin_mb": 100,  # required on top of the estimated source size
    "min_free_space_mb": 50,  # hard floor while a transfer is running
    # ---- retry ----
    "retry_attempts": 3,
    "retry_delay_seconds": 1,  # multiplied by the attempt number
    # ---- captures ----
    "expected_capture_sources": 0,  # 0 = every registered node/share
    # ---- source notifications ----
    "watch_sources": True,
    # ---- logging ----
    "log_level": "INFO",
    "status_interval_seconds": 60,
    "max_log_size_mb": 10,
    "log_backup_count": 3,
}


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


@dataclass(frozen=True)
class SyncSettings:
    """
    Immutable configuration record for one orchestrator run.

    Built once by :meth:`Config.to_settings` (or directly in tests) and
    never mutated by the sync core.
    """

    nodes: tuple[str, ...]
    shares: tuple[str, ...]
    destination_root: str
    project_name: str
    source_root_pattern: str = field(default_factory=default_source_root_pattern)
    idle_timeout_minutes: float = 5
    max_parallelism: int = 8
    poll_interval_seconds: float = 30
    safety_margin_bytes: int = 100 * MB
    min_free_bytes: int = 50 * MB
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    expected_capture_sources: int = 0
    watch_sources: bool = False

    @property
    def source_count(self) -> int:
        """Number of registered node/share pairs."""
        return len(self.nodes) * len(self.shares)

    @property
    def capture_quorum(self) -> int:
        """Sources that must deliver a capture before it counts as complete."""
        return self.expected_capture_sources or self.source_count

    @property
    def idle_timeout_seconds(self) -> float:
        return self.idle_timeout_minutes * 60

    @property
    def destination_dir(self) -> Path:
        """Directory the project is replicated into."""
        return Path(self.destination_root) / self.project_name


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                if not isinstance(stored, dict):
                    raise ValueError("top-level JSON value is not an object")
                # Merge stored values over defaults so new keys get defaults
                self._data = {**DEFAULT_CONFIG, **stored}
                logger.info("Configuration loaded from %s", self._path)
            except (json.JSONDecodeError, ValueError, OSError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = dict(DEFAULT_CONFIG)
        else:
            self._data = dict(DEFAULT_CONFIG)
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- sources ----

    @property
    def nodes(self) -> list[str]:
        """Return the ordered list of worker node names."""
        return list(self._data.get("nodes") or DEFAULT_NODES)

    @nodes.setter
    def nodes(self, value: list[str]) -> None:
        self._data["nodes"] = [n.strip() for n in value if n.strip()]

    @property
    def shares(self) -> list[str]:
        """Return the ordered list of share names checked on every node."""
        return list(self._data.get("shares") or DEFAULT_SHARES)

    @shares.setter
    def shares(self, value: list[str]) -> None:
        self._data["shares"] = [s.strip() for s in value if s.strip()]

    @property
    def source_root_pattern(self) -> str:
        """Return the ``{node}``/``{share}`` template for a share root."""
        return self._data.get("source_root_pattern") or default_source_root_pattern()

    @source_root_pattern.setter
    def source_root_pattern(self, value: str) -> None:
        self._data["source_root_pattern"] = value.strip()

    @property
    def project_name(self) -> str:
        """Return the project directory replicated from every source."""
        return self._data.get("project_name", "")

    @project_name.setter
    def project_name(self, value: str) -> None:
        self._data["project_name"] = value.strip()

    @property
    def destination_root(self) -> str:
        """Return the local destination root."""
        return self._data.get("destination_root", "")

    @destination_root.setter
    def destination_root(self, value: str) -> None:
        self._data["destination_root"] = value.strip()

    @property
    def cached_projects(self) -> list[str]:
        """Return the project names found by the last discovery scan."""
        return list(self._data.get("cached_projects", []))

    @cached_projects.setter
    def cached_projects(self, value: list[str]) -> None:
        self._data["cached_projects"] = list(value)

    # ---- scheduling ----

    @property
    def poll_interval(self) -> int:
        """Return the control-loop poll interval in seconds."""
        return int(self._data.get("poll_interval_seconds", 30))

    @poll_interval.setter
    def poll_interval(self, value: int) -> None:
        """Set the poll interval (minimum 5 s)."""
        self._data["poll_interval_seconds"] = max(5, int(value))

    @property
    def idle_timeout_minutes(self) -> int:
        """Return the idle timeout in minutes."""
        return int(self._data.get("idle_timeout_minutes", 5))

    @idle_timeout_minutes.setter
    def idle_timeout_minutes(self, value: int) -> None:
        """Set the idle timeout (minimum 1 min)."""
        self._data["idle_timeout_minutes"] = max(1, int(value))

    @property
    def max_parallelism(self) -> int:
        """Return the number of concurrent file copies per source."""
        return int(self._data.get("max_parallelism", 8))

    @max_parallelism.setter
    def max_parallelism(self, value: int) -> None:
        """Set copy parallelism, clamped to 1..64."""
        self._data["max_parallelism"] = min(64, max(1, int(value)))

    # ---- disk space ----

    @property
    def safety_margin_mb(self) -> int:
        """Return the free-space margin required before starting a transfer."""
        return int(self._data.get("safety_margin_mb", 100))

    @safety_margin_mb.setter
    def safety_margin_mb(self, value: int) -> None:
        self._data["safety_margin_mb"] = max(0, int(value))

    @property
    def min_free_space_mb(self) -> int:
        """Return the hard free-space floor enforced during a transfer."""
        return int(self._data.get("min_free_space_mb", 50))

    @min_free_space_mb.setter
    def min_free_space_mb(self, value: int) -> None:
        self._data["min_free_space_mb"] = max(0, int(value))

    # ---- retry ----

    @property
    def retry_attempts(self) -> int:
        """Return the number of copy attempts per file."""
        return int(self._data.get("retry_attempts", 3))

    @retry_attempts.setter
    def retry_attempts(self, value: int) -> None:
        """Set the number of copy attempts per file (minimum 1)."""
        self._data["retry_attempts"] = max(1, int(value))

    @property
    def retry_delay(self) -> float:
        """Return the base retry delay in seconds."""
        return float(self._data.get("retry_delay_seconds", 1))

    @retry_delay.setter
    def retry_delay(self, value: float) -> None:
        self._data["retry_delay_seconds"] = max(0.0, float(value))

    # ---- captures ----

    @property
    def expected_capture_sources(self) -> int:
        """Return the capture quorum override (0 = all registered sources)."""
        return int(self._data.get("expected_capture_sources", 0))

    @expected_capture_sources.setter
    def expected_capture_sources(self, value: int) -> None:
        self._data["expected_capture_sources"] = max(0, int(value))

    @property
    def watch_sources(self) -> bool:
        """Return whether source roots are watched for change notifications."""
        return bool(self._data.get("watch_sources", True))

    @watch_sources.setter
    def watch_sources(self, value: bool) -> None:
        self._data["watch_sources"] = value

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @log_level.setter
    def log_level(self, value: str) -> None:
        """Set the logging level name."""
        self._data["log_level"] = value

    @property
    def status_interval(self) -> int:
        """Return seconds between status summaries in the headless runner."""
        return int(self._data.get("status_interval_seconds", 60))

    @status_interval.setter
    def status_interval(self, value: int) -> None:
        self._data["status_interval_seconds"] = max(5, int(value))

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return int(self._data.get("max_log_size_mb", 10))

    @max_log_size_mb.setter
    def max_log_size_mb(self, value: int) -> None:
        """Set the maximum log file size in MB (minimum 1)."""
        self._data["max_log_size_mb"] = max(1, int(value))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return int(self._data.get("log_backup_count", 3))

    @log_backup_count.setter
    def log_backup_count(self, value: int) -> None:
        """Set the number of rotated log backups to keep."""
        self._data["log_backup_count"] = max(0, int(value))

    # ---- convenience ----

    def is_configured(self) -> bool:
        """Return True when both project and destination are set."""
        return bool(self.project_name) and bool(self.destination_root)

    def to_settings(self) -> SyncSettings:
        """Freeze the current values into a :class:`SyncSettings` record."""
        return SyncSettings(
            nodes=tuple(self.nodes),
            shares=tuple(self.shares),
            destination_root=self.destination_root,
            project_name=self.project_name,
            source_root_pattern=self.source_root_pattern,
            idle_timeout_minutes=max(1, self.idle_timeout_minutes),
            max_parallelism=min(64, max(1, self.max_parallelism)),
            poll_interval_seconds=max(5, self.poll_interval),
            safety_margin_bytes=max(0, self.safety_margin_mb) * MB,
            min_free_bytes=max(0, self.min_free_space_mb) * MB,
            retry_attempts=max(1, self.retry_attempts),
            retry_delay_seconds=max(0.0, self.retry_delay),
            expected_capture_sources=max(0, self.expected_capture_sources),
            watch_sources=self.watch_sources,
        )
