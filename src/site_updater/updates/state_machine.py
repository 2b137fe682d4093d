"""
Update transaction state machine.

UpdateOrchestrator drives one update from request to terminal state:

    idle -> downloading -> snapshotting -> installing -> completed
                |               |              |
                v               v              v
             aborted         aborted      rolling_back -> rolled_back
                                                      \\-> recovery_failed

- aborted: fetch or snapshot failed before any live file was touched.
- rolling_back: installation failed; the snapshot just captured is restored.
- recovery_failed: the restore failed too; manual intervention is needed.

Terminal states are reported with the full ordered operation log and the
machine returns to idle. The maintenance window is held for the whole
transaction and released on every exit path.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from site_updater.context import OperationContext
from site_updater.errors import (
    FailedPreconditionError,
    FetchError,
    InstallError,
    InvalidArgumentError,
    RecoveryError,
    SnapshotError,
    UpdateInProgressError,
    UpdaterError,
)
from site_updater.logging import get_logger
from site_updater.updates.version import is_newer

if TYPE_CHECKING:
    from site_updater.config import UpdaterConfig
    from site_updater.updates.fetcher import ArchiveFetcher
    from site_updater.updates.installer import Installer
    from site_updater.updates.maintenance import MaintenanceWindow
    from site_updater.updates.manifest import UpdateManifest
    from site_updater.updates.recovery import RecoveryManager
    from site_updater.updates.snapshot import Snapshot, SnapshotManager
    from site_updater.updates.version import VersionManager

logger = get_logger(__name__)


class UpdateState(str, Enum):
    """
    States of an update transaction.

    State transitions:
    - idle → downloading (update requested)
    - downloading → snapshotting (artifact available locally)
    - downloading → aborted (fetch failed)
    - snapshotting → installing (recovery container written)
    - snapshotting → aborted (snapshot failed)
    - installing → completed (install succeeded)
    - installing → rolling_back (install failed)
    - rolling_back → rolled_back | recovery_failed
    - any terminal state → idle
    """

    IDLE = "idle"
    DOWNLOADING = "downloading"
    SNAPSHOTTING = "snapshotting"
    INSTALLING = "installing"
    COMPLETED = "completed"
    ABORTED = "aborted"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    RECOVERY_FAILED = "recovery_failed"


TERMINAL_STATES = frozenset(
    {
        UpdateState.COMPLETED,
        UpdateState.ABORTED,
        UpdateState.ROLLED_BACK,
        UpdateState.RECOVERY_FAILED,
    }
)

# Valid state transitions
_VALID_TRANSITIONS: dict[UpdateState, set[UpdateState]] = {
    UpdateState.IDLE: {UpdateState.DOWNLOADING},
    UpdateState.DOWNLOADING: {UpdateState.SNAPSHOTTING, UpdateState.ABORTED},
    UpdateState.SNAPSHOTTING: {UpdateState.INSTALLING, UpdateState.ABORTED},
    UpdateState.INSTALLING: {UpdateState.COMPLETED, UpdateState.ROLLING_BACK},
    UpdateState.ROLLING_BACK: {UpdateState.ROLLED_BACK, UpdateState.RECOVERY_FAILED},
    UpdateState.COMPLETED: {UpdateState.IDLE},
    UpdateState.ABORTED: {UpdateState.IDLE},
    UpdateState.ROLLED_BACK: {UpdateState.IDLE},
    UpdateState.RECOVERY_FAILED: {UpdateState.IDLE},
}


class UpdateResult(BaseModel):
    """
    Outcome of an update transaction.

    Attributes:
        status: Terminal state reached.
        old_version: Version installed before the transaction.
        new_version: Version installed after the transaction.
        message: Summary of the outcome.
        recovery_path: Recovery container captured for this transaction.
        logs: Ordered operation log entries.
    """

    status: UpdateState = Field(..., description="Terminal state")
    old_version: str | None = Field(default=None, description="Version before the update")
    new_version: str | None = Field(default=None, description="Version after the update")
    message: str = Field(default="", description="Outcome summary")
    recovery_path: str | None = Field(
        default=None,
        description="Recovery container captured for this transaction",
    )
    logs: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Ordered operation log",
    )

    @property
    def succeeded(self) -> bool:
        return self.status == UpdateState.COMPLETED


class UpdateOrchestrator:
    """
    Runs update transactions one at a time.

    Args:
        config: Updater configuration.
        fetcher: Artifact fetcher.
        snapshots: Snapshot manager.
        installer: Installer.
        recovery: Recovery manager.
        versions: Version record manager.
        window: Maintenance window guarding the transaction.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        fetcher: ArchiveFetcher,
        snapshots: SnapshotManager,
        installer: Installer,
        recovery: RecoveryManager,
        versions: VersionManager,
        window: MaintenanceWindow,
    ) -> None:
        self.config = config
        self.fetcher = fetcher
        self.snapshots = snapshots
        self.installer = installer
        self.recovery = recovery
        self.versions = versions
        self.window = window
        self._state = UpdateState.IDLE

    @property
    def state(self) -> UpdateState:
        return self._state

    def _transition_to(self, new_state: UpdateState) -> None:
        """
        Transition to a new state.

        Raises:
            InvalidArgumentError: If the transition is not valid.
        """
        current = self._state
        if new_state not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidArgumentError(
                f"Invalid state transition from {current.value} to {new_state.value}",
                details={
                    "current_state": current.value,
                    "target_state": new_state.value,
                    "valid_transitions": sorted(
                        s.value for s in _VALID_TRANSITIONS.get(current, set())
                    ),
                },
            )
        logger.info(
            f"State transition: {current.value} -> {new_state.value}",
            extra={"old_state": current.value, "new_state": new_state.value},
        )
        self._state = new_state

    def _reset(self) -> None:
        if self._state is not UpdateState.IDLE:
            logger.debug("Returning to idle", extra={"old_state": self._state.value})
        self._state = UpdateState.IDLE

    def run_update(
        self,
        *,
        remote_name: str | None = None,
        archive_path: Path | str | None = None,
        manifest: UpdateManifest | None = None,
        ctx: OperationContext | None = None,
    ) -> UpdateResult:
        """
        Run one update transaction.

        Exactly one artifact source is used: a remote name (defaulting to the
        manifest's archive reference) or a local artifact path.

        Returns:
            UpdateResult with the terminal state and the full log.

        Raises:
            UpdateInProgressError: If a transaction is already running.
            InvalidArgumentError: If no or both artifact sources are given.
        """
        if self._state is not UpdateState.IDLE or self.window.active:
            raise UpdateInProgressError(
                "An update transaction is already running",
                details={"state": self._state.value},
            )
        if remote_name is None and archive_path is None and manifest is not None:
            remote_name = manifest.archive_ref or None
        if (remote_name is None) == (archive_path is None):
            raise InvalidArgumentError(
                "Provide exactly one of remote_name or archive_path",
                details={"remote_name": remote_name, "archive_path": str(archive_path)},
            )

        ctx = ctx or OperationContext.for_config(self.config, "update")

        self.window.enter("update")
        try:
            return self._run(ctx, remote_name, archive_path, manifest)
        finally:
            self.window.exit()
            self._reset()

    def _run(
        self,
        ctx: OperationContext,
        remote_name: str | None,
        archive_path: Path | str | None,
        manifest: UpdateManifest | None,
    ) -> UpdateResult:
        self._transition_to(UpdateState.DOWNLOADING)
        try:
            old_version = self.versions.get_current_version()
        except FailedPreconditionError as e:
            ctx.error(f"Cannot read version record: {e.message}")
            return self._finish(UpdateState.ABORTED, ctx, None, e.message)
        ctx.info(f"Starting update from version {old_version}")

        try:
            if remote_name is not None:
                archive = self.fetcher.fetch(remote_name, ctx)
            else:
                archive = self.fetcher.stage_local(archive_path, ctx)
        except FetchError as e:
            ctx.error(f"Download failed: {e.message}")
            return self._finish(UpdateState.ABORTED, ctx, old_version, e.message)
        except (OSError, UpdaterError) as e:
            message = f"Unexpected download failure: {e}"
            ctx.error(message)
            return self._finish(UpdateState.ABORTED, ctx, old_version, message)

        self._transition_to(UpdateState.SNAPSHOTTING)
        try:
            snapshot = self.snapshots.capture(archive, ctx)
        except SnapshotError as e:
            ctx.error(f"Snapshot failed: {e.message}")
            return self._finish(UpdateState.ABORTED, ctx, old_version, e.message)
        except (OSError, UpdaterError) as e:
            message = f"Unexpected snapshot failure: {e}"
            ctx.error(message)
            return self._finish(UpdateState.ABORTED, ctx, old_version, message)

        self._transition_to(UpdateState.INSTALLING)
        try:
            resolved = self.installer.apply(archive, manifest, ctx)
        except InstallError as e:
            ctx.error(f"Installation failed: {e.message}")
            return self._roll_back(snapshot, ctx, old_version, e.message)
        except Exception as e:
            message = f"Unexpected installation failure: {e}"
            ctx.error(message)
            logger.exception("Unexpected installation failure")
            return self._roll_back(snapshot, ctx, old_version, message)

        new_version = self._record_version(resolved, old_version, ctx)
        return self._finish(
            UpdateState.COMPLETED,
            ctx,
            old_version,
            f"Update to {new_version} completed",
            new_version=new_version,
            snapshot=snapshot,
        )

    def _record_version(
        self,
        manifest: UpdateManifest | None,
        old_version: str,
        ctx: OperationContext,
    ) -> str:
        target = manifest.version if manifest is not None else None
        try:
            if target is not None and is_newer(target, old_version):
                self.versions.set_current_version(target)
                ctx.info(f"Version updated to {target}")
                new_version = target
            else:
                ctx.info(f"Version unchanged at {old_version}")
                new_version = old_version
            self.versions.add_update_log(ctx.last_entry.to_dict() if ctx.last_entry else None)
        except (OSError, UpdaterError) as e:
            ctx.warning(f"Failed to update version record: {e}")
            return target or old_version
        return new_version

    def _roll_back(
        self,
        snapshot: Snapshot,
        ctx: OperationContext,
        old_version: str,
        reason: str,
    ) -> UpdateResult:
        self._transition_to(UpdateState.ROLLING_BACK)
        ctx.info("Restoring pre-update snapshot")
        try:
            self.recovery.restore(snapshot.container_path, ctx)
        except RecoveryError as e:
            ctx.error(f"Recovery failed: {e.message}")
            return self._finish(
                UpdateState.RECOVERY_FAILED,
                ctx,
                old_version,
                f"{reason}; recovery failed: {e.message}",
                snapshot=snapshot,
            )
        return self._finish(
            UpdateState.ROLLED_BACK,
            ctx,
            old_version,
            f"{reason}; changes rolled back",
            snapshot=snapshot,
        )

    def _finish(
        self,
        status: UpdateState,
        ctx: OperationContext,
        old_version: str | None,
        message: str,
        *,
        new_version: str | None = None,
        snapshot: Snapshot | None = None,
    ) -> UpdateResult:
        self._transition_to(status)
        logger.info(
            "Update transaction finished",
            extra={"status": status.value, "old_version": old_version},
        )
        return UpdateResult(
            status=status,
            old_version=old_version,
            new_version=new_version or old_version,
            message=message,
            recovery_path=str(snapshot.container_path) if snapshot else None,
            logs=ctx.to_list(),
        )
