"""
Pre-update snapshots.

SnapshotManager inspects an update artifact without extracting it, works out
which parts of the live tree the artifact will overwrite, copies those parts
(minus anything in the exclusion set) together with a database dump into a
working tree, and packages the result as a single recovery container:

    recovery_<timestamp>.zip
        files/<relative path>...
        database/database_backup_<timestamp>.json

The container is the only durable artifact. The working tree is removed as
soon as the container is written, and only the newest container is kept.

Paths that the artifact creates but that did not exist before the update are
not recorded; restoring a snapshot cannot remove them.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from site_updater.errors import FailedPreconditionError, SnapshotError
from site_updater.logging import get_logger
from site_updater.updates.archive import ARCHIVE_ERRORS, ZipArchiver
from site_updater.updates.exclusions import normalize_path
from site_updater.updates.operations import (
    LocalFileSystem,
    is_unsafe_relative_path,
    relative_posix,
    timestamp_slug,
)

if TYPE_CHECKING:
    from site_updater.config import UpdaterConfig
    from site_updater.context import OperationContext
    from site_updater.updates.capabilities import Archiver, FileSystem
    from site_updater.updates.database import DatabaseSnapshotter
    from site_updater.updates.exclusions import ExclusionSet
    from site_updater.updates.version import VersionManager

logger = get_logger(__name__)

FILES_SECTION = "files"
DATABASE_SECTION = "database"
CONTAINER_PREFIX = "recovery_"
CONTAINER_SUFFIX = ".zip"


@dataclass(frozen=True)
class Snapshot:
    """
    A captured pre-update state.

    Attributes:
        created_at: Capture time (UTC).
        container_path: Recovery container holding files and database dump.
        targets: Relative paths that were considered for backup.
        captured_files: Number of files written to the container.
        database_dump: Entry name of the database dump, if one was taken.
        absent: Targets that did not exist in the live tree.
    """

    created_at: datetime
    container_path: Path
    targets: tuple[str, ...] = ()
    captured_files: int = 0
    database_dump: str | None = None
    absent: tuple[str, ...] = field(default_factory=tuple)


def list_recovery_containers(fs: FileSystem, directory: Path) -> list[Path]:
    """Recovery containers in `directory`, newest (by modification time) first."""
    containers = [
        p
        for p in fs.list_files(directory)
        if p.name.startswith(CONTAINER_PREFIX) and p.name.endswith(CONTAINER_SUFFIX)
    ]
    return sorted(containers, key=fs.mtime, reverse=True)


def derive_targets(entries: Iterable[str], manifest_filename: str) -> tuple[list[str], list[str]]:
    """
    Compute the minimal set of live paths an artifact will write.

    A file entry contributes its parent directory; a file at the artifact
    root contributes itself. Explicit directory entries contribute
    themselves. Targets nested under another target are dropped.

    Returns:
        (directory targets, root-level file targets), both sorted.
    """
    dirs: set[str] = set()
    files: set[str] = set()
    for raw in entries:
        if is_unsafe_relative_path(raw):
            continue
        name = normalize_path(raw)
        if not name:
            continue
        if raw.replace("\\", "/").endswith("/"):
            dirs.add(name)
            continue
        parent = PurePosixPath(name).parent.as_posix()
        if parent == ".":
            if name != manifest_filename:
                files.add(name)
        else:
            dirs.add(parent)

    minimal = sorted(
        d for d in dirs if not any(d != other and d.startswith(other + "/") for other in dirs)
    )
    return minimal, sorted(files)


class SnapshotManager:
    """
    Captures recovery containers before an install.

    Args:
        config: Updater configuration.
        versions: Version record manager; receives the recovery pointer.
        database: Optional database snapshotter.
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
    def recovery_dir(self) -> Path:
        return self.config.resolve(self.config.recovery_directory)

    def capture(self, archive: Path, ctx: OperationContext) -> Snapshot:
        """
        Back up everything `archive` will overwrite.

        Args:
            archive: Update artifact.
            ctx: Operation context (exclusions and log).

        Returns:
            The captured Snapshot.

        Raises:
            SnapshotError: If the artifact is unreadable or the backup
                cannot be written. No partial container is left behind.
        """
        try:
            entries = self.archiver.list_entries(archive)
        except ARCHIVE_ERRORS as e:
            raise SnapshotError(
                f"Cannot read update artifact: {e}",
                details={"archive": str(archive)},
            ) from e

        dir_targets, file_targets = derive_targets(entries, self.config.manifest_filename)
        root = self.config.root_path
        created_at = datetime.now(UTC)
        slug = timestamp_slug(created_at)
        working = self.config.resolve(self.config.tmp_directory) / f"backup_{slug}"
        files_root = working / FILES_SECTION
        container = self.recovery_dir / f"{CONTAINER_PREFIX}{slug}{CONTAINER_SUFFIX}"

        ctx.info(f"Creating snapshot of {len(dir_targets) + len(file_targets)} paths")
        absent: list[str] = []
        members: list[tuple[Path, str]] = []
        dump_name: str | None = None
        try:
            try:
                for target in [*dir_targets, *file_targets]:
                    members.extend(
                        self._copy_target(target, root, files_root, ctx.exclusions, absent, ctx)
                    )
            except OSError as e:
                raise SnapshotError(
                    f"Failed to back up files: {e}",
                    details={"working_tree": str(working)},
                ) from e

            dump_path = self._backup_database(working / DATABASE_SECTION, ctx)
            if dump_path is not None:
                dump_name = f"{DATABASE_SECTION}/{dump_path.name}"
                members.append((dump_path, dump_name))

            try:
                self.archiver.create(container, members)
            except ARCHIVE_ERRORS as e:
                self._discard(container)
                raise SnapshotError(
                    f"Failed to create recovery container: {e}",
                    details={"container": str(container)},
                ) from e
        finally:
            self._discard(working)

        captured = sum(1 for _, name in members if name.startswith(FILES_SECTION + "/"))
        try:
            self.versions.set_recovery_path(container)
        except (OSError, FailedPreconditionError) as e:
            self._discard(container)
            raise SnapshotError(
                f"Failed to record recovery pointer: {e}",
                details={"container": str(container)},
            ) from e
        self._prune(keep=container, ctx=ctx)
        ctx.info(f"Snapshot created: {container.name} ({captured} files)")

        return Snapshot(
            created_at=created_at,
            container_path=container,
            targets=tuple([*dir_targets, *file_targets]),
            captured_files=captured,
            database_dump=dump_name,
            absent=tuple(absent),
        )

    def _copy_target(
        self,
        target: str,
        root: Path,
        files_root: Path,
        exclusions: ExclusionSet,
        absent: list[str],
        ctx: OperationContext,
    ) -> list[tuple[Path, str]]:
        if exclusions.is_excluded(target):
            ctx.info(f"Skipping excluded path {target}")
            return []

        live = root / target
        if self.fs.is_dir(live):
            sources = self.fs.walk_files(live)
        elif self.fs.is_file(live):
            sources = [live]
        else:
            absent.append(target)
            logger.debug("Snapshot target absent", extra={"target": target})
            return []

        copied: list[tuple[Path, str]] = []
        for source in sources:
            rel = relative_posix(source, root)
            if exclusions.is_excluded(rel):
                continue
            backup = files_root / rel
            self.fs.copy_file(source, backup)
            copied.append((backup, f"{FILES_SECTION}/{rel}"))
        return copied

    def _backup_database(self, directory: Path, ctx: OperationContext) -> Path | None:
        if self.database is None:
            ctx.info("No database configured, skipping database backup")
            return None
        try:
            return self.database.backup(directory, ctx)
        except SnapshotError as e:
            ctx.warning(f"Database backup failed, continuing with files only: {e.message}")
            return None

    def _discard(self, path: Path) -> None:
        try:
            self.fs.remove_tree(path)
        except OSError as e:
            logger.warning(
                "Failed to remove snapshot working data",
                extra={"path": str(path), "error": str(e)},
            )

    def list_containers(self) -> list[Path]:
        """Recovery containers in the recovery directory, newest first."""
        return list_recovery_containers(self.fs, self.recovery_dir)

    def _prune(self, keep: Path, ctx: OperationContext) -> None:
        try:
            containers = self.list_containers()
        except OSError as e:
            ctx.warning(f"Failed to list old recovery containers: {e}")
            return
        for container in containers:
            if container == keep:
                continue
            try:
                self.fs.remove_file(container)
            except OSError as e:
                ctx.warning(f"Failed to remove old recovery container {container.name}: {e}")
