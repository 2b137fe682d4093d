"""
Operation context for the site updater.

An OperationContext is created for every admin-facing operation (update,
recovery, package install, ...) and threaded explicitly through every
component call. It carries the active configuration and exclusion set and
collects the ordered log returned to the caller; components never reach into
ambient state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from site_updater.logging import get_logger

if TYPE_CHECKING:
    from site_updater.config import UpdaterConfig
    from site_updater.updates.exclusions import ExclusionSet

logger = get_logger(__name__)


class Severity(str, Enum):
    """Severity of an operation log entry."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass
class LogEntry:
    """
    A single entry in an operation log.

    Attributes:
        message: Human-readable message.
        severity: info, warning or error.
        timestamp: When the entry was recorded (UTC).
    """

    message: str
    severity: Severity = Severity.INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert the entry to a dictionary for serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "type": self.severity.value,
        }


@dataclass
class OperationContext:
    """
    Encapsulates the state of one updater operation.

    Attributes:
        config: Updater configuration for this operation.
        exclusions: Exclusion set shared by snapshot and install.
        operation: Name of the operation (e.g., "update", "recovery").
        entries: Ordered log entries recorded so far.
        started_at: When the operation started (UTC).
    """

    config: UpdaterConfig
    exclusions: ExclusionSet
    operation: str = "update"
    entries: list[LogEntry] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def for_config(cls, config: UpdaterConfig, operation: str = "update") -> OperationContext:
        """Create a context with the exclusion set derived from `config`."""
        from site_updater.updates.exclusions import ExclusionSet

        return cls(
            config=config,
            exclusions=ExclusionSet.from_config(config),
            operation=operation,
        )

    def log(self, message: str, severity: Severity | str = Severity.INFO) -> LogEntry:
        """
        Append an entry and mirror it to the process logger.

        Args:
            message: Message to record.
            severity: Entry severity.

        Returns:
            The recorded entry.
        """
        entry = LogEntry(message=message, severity=Severity(severity))
        self.entries.append(entry)
        logger.log(
            _LOG_LEVELS[entry.severity],
            message,
            extra={"operation": self.operation},
        )
        return entry

    def info(self, message: str) -> LogEntry:
        """Record an info entry."""
        return self.log(message, Severity.INFO)

    def warning(self, message: str) -> LogEntry:
        """Record a warning entry."""
        return self.log(message, Severity.WARNING)

    def error(self, message: str) -> LogEntry:
        """Record an error entry."""
        return self.log(message, Severity.ERROR)

    def entries_for(self, severity: Severity | str) -> list[LogEntry]:
        """Return the entries with the given severity, in order."""
        wanted = Severity(severity)
        return [entry for entry in self.entries if entry.severity == wanted]

    @property
    def has_errors(self) -> bool:
        """Whether any error entry has been recorded."""
        return any(entry.severity == Severity.ERROR for entry in self.entries)

    @property
    def last_entry(self) -> LogEntry | None:
        """The most recent entry, if any."""
        return self.entries[-1] if self.entries else None

    def to_list(self) -> list[dict[str, Any]]:
        """Serialize all entries in order."""
        return [entry.to_dict() for entry in self.entries]
