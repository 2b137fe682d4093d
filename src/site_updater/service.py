"""
Admin-facing operations of the site updater.

UpdaterService wires the update pipeline from an AppConfig and exposes the
operations an administrative layer (web panel, CLI) calls:

- check_for_update: is a newer version available?
- trigger_update: run an update transaction (remote artifact or uploaded file)
- trigger_recovery: restore the current recovery container
- install_package / package_exists: standalone dependency packages
- clear_cache: run the configured cache-clearing commands
- verify_license: ask the update server whether the license is valid
- status: installed version, transaction state and maintenance flag

Every mutating operation checks the operator against the configured
allow-list first.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from site_updater.context import OperationContext
from site_updater.errors import (
    FetchError,
    PermissionDeniedError,
    RecoveryError,
    UnavailableError,
)
from site_updater.logging import get_logger
from site_updater.updates.archive import ZipArchiver
from site_updater.updates.database import DatabaseSnapshotter, SqlAlchemyDatabase
from site_updater.updates.fetcher import ArchiveFetcher, HttpxFetcher
from site_updater.updates.installer import Installer
from site_updater.updates.maintenance import MARKER_FILENAME, MaintenanceWindow, get_maintenance_window
from site_updater.updates.operations import LocalFileSystem
from site_updater.updates.packages import PackageInstaller
from site_updater.updates.process import SubprocessRunner, split_command
from site_updater.updates.recovery import RecoveryManager
from site_updater.updates.snapshot import SnapshotManager
from site_updater.updates.state_machine import UpdateOrchestrator, UpdateResult, UpdateState
from site_updater.updates.version import VersionManager

if TYPE_CHECKING:
    from site_updater.config import AppConfig
    from site_updater.updates.capabilities import (
        Archiver,
        Database,
        FileSystem,
        HttpFetcher,
        ProcessRunner,
    )

logger = get_logger(__name__)

LICENSE_VERIFY_PATH = "license/verify"


class UpdaterService:
    """
    Entry point for administrative operations.

    Capabilities default to the local implementations and can be replaced
    individually (tests pass fakes).

    Args:
        config: Application configuration.
        http: HttpFetcher capability.
        runner: ProcessRunner capability.
        fs: FileSystem capability.
        archiver: Archiver capability.
        database: Database capability; built from config.database.url if omitted.
        window: Maintenance window; the process-wide window if omitted.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        http: HttpFetcher | None = None,
        runner: ProcessRunner | None = None,
        fs: FileSystem | None = None,
        archiver: Archiver | None = None,
        database: Database | None = None,
        window: MaintenanceWindow | None = None,
    ) -> None:
        self.config = config
        updater = config.updater
        self.http = http or HttpxFetcher()
        self.runner = runner or SubprocessRunner()
        self.fs = fs or LocalFileSystem()
        self.archiver = archiver or ZipArchiver()

        if database is None and config.database.url:
            database = SqlAlchemyDatabase(config.database.url, batch_size=config.database.batch_size)
        self.database = (
            DatabaseSnapshotter(database, dump_format=config.database.dump_format)
            if database is not None
            else None
        )

        self.window = window or get_maintenance_window(
            updater.resolve(updater.tmp_directory) / MARKER_FILENAME
        )
        self.versions = VersionManager(
            updater.resolve(updater.version_file),
            default_version=updater.default_version,
        )
        self.fetcher = ArchiveFetcher(updater, config.license, self.http, self.fs)
        self.snapshots = SnapshotManager(updater, self.versions, self.database, self.archiver, self.fs)
        self.installer = Installer(updater, self.archiver, self.fs, self.runner)
        self.recovery = RecoveryManager(updater, self.versions, self.database, self.archiver, self.fs)
        self.packages = PackageInstaller(updater, self.archiver, self.fs)
        self.orchestrator = UpdateOrchestrator(
            updater,
            fetcher=self.fetcher,
            snapshots=self.snapshots,
            installer=self.installer,
            recovery=self.recovery,
            versions=self.versions,
            window=self.window,
        )

    def _context(self, operation: str) -> OperationContext:
        return OperationContext.for_config(self.config.updater, operation)

    # =========================================================================
    # Permission
    # =========================================================================

    def is_allowed(self, operator: str | int | None) -> bool:
        security = self.config.security
        if not security.operator_check_enabled:
            return True
        if operator is None:
            return False
        return str(operator) in security.allowed_operators

    def check_permission(self, operator: str | int | None, operation: str = "update") -> None:
        """
        Verify that `operator` may run updater operations.

        Raises:
            PermissionDeniedError: If the operator is not allowed.
        """
        if not self.is_allowed(operator):
            logger.warning(
                "Operator not allowed",
                extra={"operator": operator, "operation": operation},
            )
            raise PermissionDeniedError(
                f"Operator is not allowed to run {operation}",
                details={"operator": operator, "operation": operation},
            )

    # =========================================================================
    # Updates
    # =========================================================================

    def check_for_update(self, operator: str | int | None) -> dict[str, Any]:
        """
        Check the update server for a newer version.

        Returns:
            Dictionary with status ("available", "none", "disabled"),
            current_version and, when available, the manifest.

        Raises:
            FetchError: If the update server cannot be queried.
        """
        self.check_permission(operator, "check")
        ctx = self._context("check")
        result = self.fetcher.check_for_update(self.versions.get_current_version(), ctx)
        return result.to_dict()

    def trigger_update(
        self,
        operator: str | int | None,
        *,
        remote_name: str | None = None,
        archive_path: Path | str | None = None,
    ) -> UpdateResult:
        """
        Run an update transaction.

        With neither a remote name nor an uploaded file, the update server is
        queried and the advertised artifact is installed if it is newer.

        Raises:
            UpdateInProgressError: If a transaction is already running.
        """
        self.check_permission(operator, "update")
        ctx = self._context("update")
        manifest = None
        if remote_name is None and archive_path is None:
            check = self.fetcher.check_for_update(self.versions.get_current_version(), ctx)
            if not check.available:
                current = check.current_version
                return UpdateResult(
                    status=UpdateState.COMPLETED,
                    old_version=current,
                    new_version=current,
                    message=f"No update available ({check.status})",
                    logs=ctx.to_list(),
                )
            manifest = check.manifest

        return self.orchestrator.run_update(
            remote_name=remote_name,
            archive_path=archive_path,
            manifest=manifest,
            ctx=ctx,
        )

    def trigger_recovery(self, operator: str | int | None) -> dict[str, Any]:
        """
        Restore the current recovery container inside the maintenance window.

        Raises:
            UpdateInProgressError: If a transaction is already running.
        """
        self.check_permission(operator, "recovery")
        ctx = self._context("recovery")
        with self.window.hold("recovery"):
            try:
                container = self.recovery.recover(ctx)
            except RecoveryError as e:
                ctx.error(e.message)
                return {"status": "failed", "message": e.message, "logs": ctx.to_list()}
        return {
            "status": "restored",
            "container": str(container),
            "logs": ctx.to_list(),
        }

    # =========================================================================
    # Packages
    # =========================================================================

    def install_package(
        self,
        operator: str | int | None,
        name: str,
        archive_path: Path | str,
    ) -> dict[str, Any]:
        """Install a standalone package into the dependency directory."""
        self.check_permission(operator, "install_package")
        ctx = self._context("install_package")
        target = self.packages.install_package(name, Path(archive_path), ctx)
        return {"status": "installed", "path": str(target), "logs": ctx.to_list()}

    def package_exists(self, name: str) -> bool:
        return self.packages.package_exists(name)

    # =========================================================================
    # Maintenance helpers
    # =========================================================================

    def clear_cache(self, operator: str | int | None) -> bool:
        """
        Run the configured cache-clearing commands.

        Returns:
            True if every command succeeded.
        """
        self.check_permission(operator, "clear_cache")
        updater = self.config.updater
        ok = True
        for command in updater.cache_clear_commands:
            try:
                result = self.runner.run(
                    split_command(command),
                    cwd=updater.root_path,
                    timeout=updater.command_timeout,
                )
            except UnavailableError as e:
                logger.warning("Cache command failed", extra={"command": command, "error": e.message})
                ok = False
                continue
            if not result.succeeded:
                logger.warning(
                    "Cache command failed",
                    extra={"command": command, "returncode": result.returncode},
                )
                ok = False
        return ok

    def verify_license(self, key: str | None = None) -> dict[str, Any]:
        """
        Ask the update server whether a license is valid.

        Returns:
            Dictionary with a boolean "valid" and the server's response, or
            an "error" when the server could not be reached.
        """
        license_config = self.config.license
        if key is not None:
            license_config = license_config.model_copy(update={"key": key})
        if not license_config.key:
            return {"valid": False, "error": "No license key configured"}

        updater = self.config.updater
        url = f"{updater.base_url.rstrip('/')}/{LICENSE_VERIFY_PATH}"
        try:
            response = self.http.request_json(
                "POST",
                url,
                headers=license_config.headers(),
                timeout=updater.request_timeout,
                payload={"key": license_config.key},
            )
        except FetchError as e:
            logger.warning("License verification failed", extra={"error": e.message})
            return {"valid": False, "error": e.message}

        if not isinstance(response, dict):
            return {"valid": False, "error": "Unexpected license server response"}
        return {**response, "valid": bool(response.get("valid"))}

    def status(self) -> dict[str, Any]:
        """Installed version, transaction state and maintenance flag."""
        record = self.versions.load()
        return {
            "version": record.version,
            "last_update": record.last_update,
            "recovery_path": record.recovery_pointer,
            "state": self.orchestrator.state.value,
            "maintenance": self.window.active,
        }
