"""
Source registry for UCX Sync.

Enumerates the fixed universe of (node, share) identities and checks
which of them currently expose the target project as a readable
directory tree.  Unreachable roots are the normal steady state on a
capture cluster (nodes power-cycle, shares go offline), so every check
answers "not available" instead of raising.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Top-level share entries that are never projects (compared lowercase,
# exact or followed by a space).
_RESERVED_PROJECT_NAMES = (
    "system volume information",
    "recycler",
    "recycled",
    "$recycle.bin",
    "logs",
    "log",
    "temp",
    "tmp",
    "windows",
    "program files",
    "program files (x86)",
    "programdata",
    "users",
    "documents and settings",
    "config.msi",
    "msocache",
    "recovery",
    "boot",
    "efi",
    "perflogs",
)

_SHARE_ALIASES = {
    "E$": "Fast",
    "F$": "Normal",
}


def share_alias(share: str) -> str:
    """Return the friendly display name of a share (``E$`` -> ``Fast``)."""
    if not share:
        return ""
    return _SHARE_ALIASES.get(share.upper(), share)


def is_valid_project_name(name: str) -> bool:
    """Return True if a top-level share directory looks like a project."""
    if len(name) <= 1 or name.startswith(("$", ".")):
        return False
    lowered = name.lower()
    return not any(
        lowered == reserved or lowered.startswith(reserved + " ")
        for reserved in _RESERVED_PROJECT_NAMES
    )


@dataclass(frozen=True, order=True)
class SourceKey:
    """Identity of one worker node/share pair."""
    node: str
    share: str

    def __str__(self) -> str:
        return f"{self.node}-{self.share}"

    @property
    def label(self) -> str:
        """Log prefix, e.g. ``[WU01][E$]``."""
        return f"[{self.node}][{self.share}]"


@dataclass(frozen=True)
class SourceRoot:
    """A project directory that resolved on a source during this poll."""
    key: SourceKey
    project: str
    path: Path


class SourceRegistry:
    """
    Closed registry of node/share sources.

    Parameters
    ----------
    nodes : iterable of str
        Worker node names, in display order.
    shares : iterable of str
        Share names checked on every node.
    root_pattern : str
        Template for a share root; ``{node}`` and ``{share}`` are
        substituted (``\\\\{node}\\{share}`` for UNC admin shares).
    """

    def __init__(
        self,
        nodes: Iterable[str],
        shares: Iterable[str],
        root_pattern: str,
    ):
        self._nodes = tuple(nodes)
        self._shares = tuple(shares)
        self._root_pattern = root_pattern
        self._keys = tuple(
            SourceKey(node, share) for node in self._nodes for share in self._shares
        )

    @classmethod
    def from_settings(cls, settings) -> "SourceRegistry":
        return cls(settings.nodes, settings.shares, settings.source_root_pattern)

    @property
    def keys(self) -> tuple[SourceKey, ...]:
        """Every registered source, node-major in configuration order."""
        return self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def share_root(self, key: SourceKey) -> Path:
        """Return the root path of *key*'s share (project not included)."""
        return Path(self._root_pattern.format(node=key.node, share=key.share))

    def resolve(self, key: SourceKey, project: str) -> SourceRoot | None:
        """
        Return the project root on *key* if it exists and can be listed.

        Access errors and missing paths mean "not currently available".
        """
        path = self.share_root(key) / project
        try:
            if not path.is_dir():
                return None
            with os.scandir(path) as it:
                next(it, None)
        except OSError as exc:
            logger.debug("%s %s not available: %s", key.label, path, exc)
            return None
        return SourceRoot(key=key, project=project, path=path)

    def discover(self, project: str) -> set[SourceKey]:
        """Return the sources that currently expose *project*."""
        return {key for key in self._keys if self.resolve(key, project) is not None}

    def find_available_projects(self) -> list[str]:
        """
        Scan every reachable share root for project directories.

        Returns distinct names (case-insensitive), sorted case-insensitively.
        """
        found: dict[str, str] = {}
        for key in self._keys:
            root = self.share_root(key)
            try:
                if not root.is_dir():
                    logger.info("Root not found: %s", root)
                    continue
                with os.scandir(root) as it:
                    for entry in it:
                        try:
                            if entry.is_dir() and is_valid_project_name(entry.name):
                                found.setdefault(entry.name.lower(), entry.name)
                        except OSError:
                            continue
            except OSError as exc:
                logger.warning("Error scanning %s: %s", root, exc)
        return sorted(found.values(), key=str.lower)

    @staticmethod
    def estimate_size(root: str | Path) -> int:
        """Best-effort total size in bytes of every file below *root*."""
        total = 0
        for dirpath, _dirnames, filenames in os.walk(root, onerror=lambda exc: None):
            for name in filenames:
                try:
                    total += os.stat(os.path.join(dirpath, name)).st_size
                except OSError:
                    continue
        return total
