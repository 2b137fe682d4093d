"""
Error types for the site updater.

This module defines the UpdaterError base class and the subclasses used by the
update pipeline. Components raise these errors; the orchestrator and the
service layer translate them into terminal states and log entries.

Propagation policy:
- FetchError and SnapshotError abort before any live mutation (no rollback).
- InstallError always triggers an automatic recovery attempt.
- RecoveryError leaves the transaction in a terminal failure state.
"""

from __future__ import annotations

from typing import Any


class UpdaterError(Exception):
    """
    Base exception class for update pipeline errors.

    Attributes:
        error_code: Internal error code string (e.g., "fetch_failed",
            "install_failed", "permission_denied").
        message: Human-readable error message.
        details: Optional structured details (e.g., paths, exit codes).

    Example:
        >>> raise UpdaterError(
        ...     error_code="install_failed",
        ...     message="Failed to copy file: app/main.py",
        ...     details={"path": "app/main.py"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdaterError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(UpdaterError):
    """Error raised when an operation receives invalid input."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class PermissionDeniedError(UpdaterError):
    """Error raised when the operator is not allowed to run updates."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a PermissionDeniedError."""
        super().__init__(
            error_code="permission_denied", message=message, details=details
        )


class UnavailableError(UpdaterError):
    """
    Error raised when an external resource cannot be used.

    Raised by the process runner when a command cannot be executed or
    times out.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class FailedPreconditionError(UpdaterError):
    """Error raised when a precondition for the operation is not met."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FailedPreconditionError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class UpdateInProgressError(UpdaterError):
    """
    Error raised when a second transaction is requested while one is active.

    No component of the pipeline is reentrant, so concurrent requests are
    rejected rather than serialized.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UpdateInProgressError."""
        super().__init__(
            error_code="update_in_progress", message=message, details=details
        )


class FetchError(UpdaterError):
    """Error raised when the update artifact or update info cannot be fetched."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FetchError."""
        super().__init__(error_code="fetch_failed", message=message, details=details)


class SnapshotError(UpdaterError):
    """Error raised when the pre-update snapshot cannot be captured."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a SnapshotError."""
        super().__init__(
            error_code="snapshot_failed", message=message, details=details
        )


class InstallError(UpdaterError):
    """
    Error raised when installing the artifact fails.

    Covers directory and file copy failures, a failed dependency rebuild, and
    a hook script that fails or raises.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InstallError."""
        super().__init__(
            error_code="install_failed", message=message, details=details
        )


class RecoveryError(UpdaterError):
    """Error raised when a recovery container cannot be restored."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a RecoveryError."""
        super().__init__(
            error_code="recovery_failed", message=message, details=details
        )
