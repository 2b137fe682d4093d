"""
Dependency-directory swap.

When an update ships a complete replacement of the vendored dependency
directory together with its two descriptor files, the live directory is
replaced wholesale and an external rebuild command is run. This is a flat
directory replace, not version solving.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from site_updater.errors import InstallError, UnavailableError
from site_updater.logging import get_logger
from site_updater.updates.operations import LocalFileSystem, timestamp_slug
from site_updater.updates.process import SubprocessRunner, split_command

if TYPE_CHECKING:
    from site_updater.config import UpdaterConfig
    from site_updater.context import OperationContext
    from site_updater.updates.capabilities import FileSystem, ProcessRunner

logger = get_logger(__name__)

# Keep only the tail of rebuild output in error details.
_OUTPUT_TAIL = 2000


class DependencySwapper:
    """
    Replaces the live dependency directory from an extracted artifact.

    Args:
        config: Updater configuration (directory name, descriptors, rebuild command).
        runner: ProcessRunner capability.
        fs: FileSystem capability.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        runner: ProcessRunner | None = None,
        fs: FileSystem | None = None,
    ) -> None:
        self.config = config
        self.runner = runner or SubprocessRunner()
        self.fs = fs or LocalFileSystem()

    @property
    def managed_paths(self) -> tuple[str, ...]:
        """Relative paths replaced by a swap."""
        return (self.config.dependency_dir, *self.config.dependency_descriptors)

    def bundle_complete(self, extracted_root: Path) -> bool:
        """Whether the extracted tree holds the directory and both descriptors."""
        if not self.fs.is_dir(extracted_root / self.config.dependency_dir):
            return False
        return all(
            self.fs.is_file(extracted_root / name) for name in self.config.dependency_descriptors
        )

    def excluded_paths(self, ctx: OperationContext) -> list[str]:
        """Managed paths the active exclusion set protects."""
        return [path for path in self.managed_paths if ctx.exclusions.overlaps(path)]

    def can_swap(self, extracted_root: Path, ctx: OperationContext) -> bool:
        """Whether a swap will run: complete bundle and nothing managed is excluded."""
        return self.bundle_complete(extracted_root) and not self.excluded_paths(ctx)

    def backup_current(self, ctx: OperationContext) -> Path:
        """Copy the live directory and descriptors under a timestamped path."""
        root = self.config.root_path
        backup = self.config.resolve(self.config.tmp_directory) / (
            f"backup_{Path(self.config.dependency_dir).name}_{timestamp_slug()}"
        )
        self.fs.make_dirs(backup)
        live_dir = root / self.config.dependency_dir
        if self.fs.is_dir(live_dir):
            self.fs.copy_tree(live_dir, backup / self.config.dependency_dir)
        for name in self.config.dependency_descriptors:
            if self.fs.is_file(root / name):
                self.fs.copy_file(root / name, backup / name)
        ctx.info(f"Backed up dependency directory to {backup.name}")
        return backup

    def swap(self, extracted_root: Path, ctx: OperationContext) -> bool:
        """
        Replace the dependency directory and rebuild it.

        Returns:
            True if a swap happened, False if the bundle was incomplete or
            a managed path is excluded.

        Raises:
            InstallError: If copying fails or the rebuild exits non-zero.
        """
        if not self.bundle_complete(extracted_root):
            ctx.info("Dependency bundle incomplete, skipping dependency update")
            return False
        excluded = self.excluded_paths(ctx)
        if excluded:
            ctx.warning(
                f"Dependency update skipped, excluded paths: {', '.join(excluded)}"
            )
            return False

        root = self.config.root_path
        live_dir = root / self.config.dependency_dir
        try:
            self.backup_current(ctx)
            self.fs.remove_tree(live_dir)
            self.fs.copy_tree(extracted_root / self.config.dependency_dir, live_dir)
            for name in self.config.dependency_descriptors:
                self.fs.copy_file(extracted_root / name, root / name)
        except OSError as e:
            raise InstallError(
                f"Failed to replace dependency directory: {e}",
                details={"dependency_dir": str(live_dir)},
            ) from e
        ctx.info("Dependency directory replaced")

        self.rebuild(ctx)
        return True

    def rebuild(self, ctx: OperationContext) -> None:
        """
        Run the external rebuild command.

        Raises:
            InstallError: On timeout, launch failure, or non-zero exit.
        """
        command = self.config.dependency_rebuild_command
        ctx.info(f"Rebuilding dependencies: {command}")
        try:
            result = self.runner.run(
                split_command(command),
                cwd=self.config.root_path,
                timeout=self.config.dependency_rebuild_timeout,
            )
        except UnavailableError as e:
            raise InstallError(
                f"Dependency rebuild could not run: {e.message}",
                details={"command": command, **e.details},
            ) from e

        if not result.succeeded:
            raise InstallError(
                f"Dependency rebuild failed with exit code {result.returncode}",
                details={
                    "command": command,
                    "returncode": result.returncode,
                    "stderr": result.stderr[-_OUTPUT_TAIL:],
                },
            )
        ctx.info("Dependencies rebuilt")
