"""
Admission control for UCX Sync.

The governor decides whether a new per-source transfer may start (a
global ceiling plus a destination free-space check) and whether a
running transfer must be aborted because the destination drive is
nearly full.  It never raises: an answer of "no" simply means "skip and
try again next poll".
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from pathlib import Path

from ucx_sync.platform_utils import format_bytes, free_bytes

logger = logging.getLogger(__name__)

MB = 1024 * 1024
DEFAULT_SAFETY_MARGIN = 100 * MB
DEFAULT_MIN_FREE = 50 * MB


class GovernorAction(enum.Enum):
    """Verdict of an in-transfer free-space check."""
    CONTINUE = "continue"
    ABORT_LOW_SPACE = "abort_low_space"


class ResourceGovernor:
    """
    Gatekeeper for starting and continuing transfers.

    Parameters
    ----------
    max_active : int
        Ceiling on concurrently live tasks (one per registered source).
    safety_margin : int
        Bytes that must remain free on top of the estimated transfer size.
    min_free : int
        Hard floor in bytes; a running transfer is aborted below it.
    free_space : callable, optional
        ``free_space(path) -> int | None``; defaults to the drive query in
        :mod:`ucx_sync.platform_utils`.  None means "unknown".
    """

    def __init__(
        self,
        max_active: int,
        safety_margin: int = DEFAULT_SAFETY_MARGIN,
        min_free: int = DEFAULT_MIN_FREE,
        free_space: Callable[[str | Path], int | None] | None = None,
    ):
        self.max_active = max(1, max_active)
        self.safety_margin = safety_margin
        self.min_free = min_free
        self._free_space = free_space or free_bytes

    def can_admit_more(self, active_count: int) -> bool:
        """Return True while fewer than ``max_active`` tasks are live."""
        return active_count < self.max_active

    def can_start(self, dest_path: str | Path, estimated_bytes: int = 0) -> bool:
        """
        Return True if *dest_path* has room for *estimated_bytes* plus margin.

        An unknown free-space reading admits the transfer; the in-transfer
        floor still protects the drive.
        """
        free = self._free_space(dest_path)
        if free is None:
            return True
        required = max(0, estimated_bytes) + self.safety_margin
        if free < required:
            logger.warning(
                "Insufficient disk space at %s: need %s, available %s",
                dest_path, format_bytes(required), format_bytes(free),
            )
            return False
        return True

    def check_during_transfer(self, dest_path: str | Path) -> GovernorAction:
        """Return ABORT_LOW_SPACE once free space falls below the hard floor."""
        free = self._free_space(dest_path)
        if free is not None and free < self.min_free:
            logger.warning(
                "Critically low disk space at %s (%s free)",
                dest_path, format_bytes(free),
            )
            return GovernorAction.ABORT_LOW_SPACE
        return GovernorAction.CONTINUE
