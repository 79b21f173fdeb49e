"""
Cross-platform utilities for UCX Sync.

Centralises all OS-detection logic so every other module can import
a single canonical set of helpers rather than scattering ``sys.platform``
checks throughout the codebase.

Supported platforms:
  - Windows 10/11 (UNC admin shares such as ``\\\\WU01\\E$``)
  - macOS 12+ and Linux (shares mounted below a local directory)
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - Windows : ``%APPDATA%\\UCXSync``
    - macOS   : ``~/Library/Application Support/UCXSync``
    - Linux   : ``$XDG_CONFIG_HOME/UCXSync`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / "UCXSync"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_path() -> Path:
    """Return the path to the log file (inside the config directory)."""
    return get_config_dir() / "ucx_sync.log"


def default_source_root_pattern() -> str:
    """
    Return the default template for a node/share root.

    ``{node}`` and ``{share}`` are substituted by the source registry.
    Windows reaches the admin shares directly over UNC; other platforms
    expect them mounted under ``/mnt``.
    """
    if IS_WINDOWS:
        return "\\\\{node}\\{share}"
    return "/mnt/{node}/{share}"


# ---- disk space ---------------------------------------------------------


def _existing_anchor(path: str | Path) -> Path:
    """Walk up from *path* to the nearest directory that exists."""
    p = Path(path)
    while not p.exists() and p.parent != p:
        p = p.parent
    return p


def free_bytes(path: str | Path) -> int | None:
    """
    Return the free bytes available to the user on the drive holding *path*.

    *path* need not exist yet; the nearest existing parent is measured.
    Returns None when the drive cannot be queried.
    """
    try:
        return shutil.disk_usage(str(_existing_anchor(path))).free
    except OSError:
        logger.debug("Could not query free space for %s", path, exc_info=True)
        return None


def format_bytes(size: float) -> str:
    """Format a byte count as a short human-readable string."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(size) < 1024 or unit == "TB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"
