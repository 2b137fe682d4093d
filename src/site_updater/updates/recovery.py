"""
Snapshot restoration.

RecoveryManager writes the contents of a recovery container back over the
live tree. Entries are processed one by one rather than through a bulk
extract so that every name can be checked before anything is written:
entries with parent-directory segments, rooted paths or drive letters are
logged as suspicious and skipped.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from site_updater.errors import FailedPreconditionError, RecoveryError
from site_updater.logging import get_logger
from site_updater.updates.archive import ARCHIVE_ERRORS, ZipArchiver
from site_updater.updates.operations import (
    LocalFileSystem,
    is_unsafe_relative_path,
    is_within,
)
from site_updater.updates.snapshot import (
    DATABASE_SECTION,
    FILES_SECTION,
    list_recovery_containers,
)

if TYPE_CHECKING:
    from site_updater.config import UpdaterConfig
    from site_updater.context import OperationContext
    from site_updater.updates.capabilities import Archiver, FileSystem
    from site_updater.updates.database import DatabaseSnapshotter
    from site_updater.updates.version import VersionManager

logger = get_logger(__name__)

SCRATCH_DIRNAME = "recovery_extract"


class RecoveryManager:
    """
    Restores recovery containers.

    Args:
        config: Updater configuration.
        versions: Version record manager (source of the recovery pointer).
        database: Optional database snapshotter for the database section.
        archiver: Archiver capability.
        fs: FileSystem capability.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        versions: VersionManager,
        database: DatabaseSnapshotter | None = None,
        archiver: Archiver | None = None,
        fs: FileSystem | None = None,
    ) -> None:
        self.config = config
        self.versions = versions
        self.database = database
        self.archiver = archiver or ZipArchiver()
        self.fs = fs or LocalFileSystem()

    @property
    def scratch_dir(self) -> Path:
        return self.config.resolve(self.config.tmp_directory) / SCRATCH_DIRNAME

    def locate(self) -> Path | None:
        """
        Find the container to restore.

        The version record's pointer wins while the file it names exists;
        otherwise the most recently modified container is used.
        """
        try:
            pointer = self.versions.get_recovery_path()
        except FailedPreconditionError as e:
            logger.warning("Version record unreadable, scanning for containers", extra={"error": str(e)})
            pointer = None
        if pointer is not None and self.fs.is_file(pointer):
            return pointer
        containers = list_recovery_containers(self.fs, self.config.resolve(self.config.recovery_directory))
        return containers[0] if containers else None

    def recover(self, ctx: OperationContext) -> Path:
        """
        Restore the current recovery container.

        Returns:
            The container that was restored.

        Raises:
            RecoveryError: If no container exists or the restore fails.
        """
        container = self.locate()
        if container is None:
            raise RecoveryError("No recovery container available")
        self.restore(container, ctx)
        return container

    def restore(self, container: Path, ctx: OperationContext) -> None:
        """
        Write a container's files and database dump back to the live tree.

        Individual file failures do not stop the remaining files from being
        restored; they are collected and reported together at the end.

        Raises:
            RecoveryError: If the container is unreadable or anything fails to restore.
        """
        ctx.info(f"Restoring from {container.name}")
        try:
            entries = self.archiver.list_entries(container)
        except ARCHIVE_ERRORS as e:
            raise RecoveryError(
                f"Cannot read recovery container: {e}",
                details={"container": str(container)},
            ) from e

        scratch = self.scratch_dir
        root = self.config.root_path
        failed: list[str] = []
        restored = 0
        database_error: RecoveryError | None = None
        try:
            self.fs.remove_tree(scratch)
            self.fs.make_dirs(scratch)

            dumps: list[str] = []
            for name in entries:
                if name.endswith("/"):
                    continue
                if name.startswith(DATABASE_SECTION + "/"):
                    dumps.append(name)
                    continue
                if not name.startswith(FILES_SECTION + "/"):
                    continue
                rel = name[len(FILES_SECTION) + 1 :]
                if not rel or is_unsafe_relative_path(rel) or not is_within(root / rel, root):
                    ctx.warning(f"Skipping suspicious recovery entry: {name}")
                    continue
                try:
                    staged = scratch / FILES_SECTION / rel
                    self.archiver.extract_member(container, name, staged)
                    self.fs.copy_file(staged, root / rel)
                except ARCHIVE_ERRORS as e:
                    failed.append(rel)
                    ctx.error(f"Failed to restore {rel}: {e}")
                    continue
                restored += 1
            ctx.info(f"Restored {restored} files")

            if dumps:
                try:
                    self._restore_database(container, dumps[0], scratch, ctx)
                except RecoveryError as e:
                    database_error = e
                    ctx.error(e.message)
        except OSError as e:
            raise RecoveryError(
                f"Recovery scratch space unavailable: {e}",
                details={"scratch": str(scratch)},
            ) from e
        finally:
            try:
                self.fs.remove_tree(scratch)
            except OSError as e:
                ctx.warning(f"Failed to remove recovery scratch directory: {e}")

        if failed or database_error is not None:
            raise RecoveryError(
                "Recovery completed with failures",
                details={
                    "failed_files": failed,
                    "database_error": database_error.message if database_error else None,
                },
            )
        ctx.info("Recovery completed")

    def _restore_database(
        self,
        container: Path,
        entry: str,
        scratch: Path,
        ctx: OperationContext,
    ) -> None:
        if self.database is None:
            ctx.warning("Recovery container holds a database dump but no database is configured")
            return
        filename = PurePosixPath(entry).name
        if not filename or is_unsafe_relative_path(filename):
            ctx.warning(f"Skipping suspicious recovery entry: {entry}")
            return
        staged = scratch / DATABASE_SECTION / filename
        try:
            self.archiver.extract_member(container, entry, staged)
        except ARCHIVE_ERRORS as e:
            raise RecoveryError(
                f"Failed to extract database dump: {e}",
                details={"entry": entry},
            ) from e
        self.database.restore(staged, ctx)
