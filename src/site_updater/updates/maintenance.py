"""
Maintenance window for update transactions.

The window is a process-wide flag set when a transaction starts and cleared
when it ends on every exit path. While it is active the live application is
considered unreachable; a marker file is written so external layers (web
front end, workers) can check it without sharing memory with the updater.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from site_updater.errors import UpdateInProgressError
from site_updater.logging import get_logger

logger = get_logger(__name__)

MARKER_FILENAME = "maintenance"


class MaintenanceWindow:
    """
    Exclusive maintenance window.

    Args:
        marker_path: Optional marker file written while the window is active.
    """

    def __init__(self, marker_path: Path | None = None) -> None:
        self.marker_path = marker_path
        self._lock = threading.Lock()
        self._active = False
        self._entered_at: datetime | None = None

    @property
    def active(self) -> bool:
        """Whether a transaction currently holds the window."""
        return self._active

    @property
    def entered_at(self) -> datetime | None:
        return self._entered_at

    def enter(self, reason: str = "update") -> None:
        """
        Open the window.

        Raises:
            UpdateInProgressError: If the window is already active.
        """
        with self._lock:
            if self._active:
                raise UpdateInProgressError(
                    "Another update transaction is in progress",
                    details={
                        "entered_at": self._entered_at.isoformat() if self._entered_at else None,
                    },
                )
            self._active = True
            self._entered_at = datetime.now(UTC)

        if self.marker_path is not None:
            try:
                self.marker_path.parent.mkdir(parents=True, exist_ok=True)
                self.marker_path.write_text(
                    f"{reason} {self._entered_at.isoformat()}\n", encoding="utf-8"
                )
            except OSError:
                with self._lock:
                    self._active = False
                    self._entered_at = None
                raise
        logger.info("Entered maintenance window", extra={"reason": reason})

    def exit(self) -> None:
        """Close the window. Safe to call when it is not active."""
        with self._lock:
            was_active = self._active
            self._active = False
            self._entered_at = None

        if self.marker_path is not None:
            try:
                self.marker_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(
                    "Failed to remove maintenance marker",
                    extra={"path": str(self.marker_path), "error": str(e)},
                )
        if was_active:
            logger.info("Exited maintenance window")

    @contextmanager
    def hold(self, reason: str = "update") -> Iterator[MaintenanceWindow]:
        """Hold the window for the duration of a `with` block."""
        self.enter(reason)
        try:
            yield self
        finally:
            self.exit()


_default_window: MaintenanceWindow | None = None
_default_lock = threading.Lock()


def get_maintenance_window(marker_path: Path | None = None) -> MaintenanceWindow:
    """
    Return the process-wide maintenance window.

    The marker path is only applied when the window is first created.
    """
    global _default_window
    with _default_lock:
        if _default_window is None:
            _default_window = MaintenanceWindow(marker_path)
        return _default_window


def reset_maintenance_window() -> None:
    """Drop the process-wide window (used by tests)."""
    global _default_window
    with _default_lock:
        _default_window = None
