"""
Artifact installation.

Installer.apply() extracts an artifact to scratch space and writes it over
the live tree:

1. Extract; read the manifest file if no manifest was supplied.
2. Create every directory of the extracted tree (excluded paths skipped).
3. Copy every file over its live counterpart (manifest and excluded paths
   skipped). There is no per-file backup; the snapshot covers rollback.
4. Swap the dependency directory when the manifest asks for it.
5. Run the hook script, if the artifact ships one.
6. Run post-install commands; failures are warnings only.
7. Remove scratch space and the artifact.

A failure in steps 1-5 raises InstallError and leaves whatever was already
copied in place; the orchestrator restores the snapshot.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from site_updater.errors import InstallError, InvalidArgumentError, UnavailableError
from site_updater.logging import get_logger
from site_updater.updates.archive import ARCHIVE_ERRORS, ZipArchiver
from site_updater.updates.dependencies import DependencySwapper
from site_updater.updates.hooks import HookRunner
from site_updater.updates.manifest import UpdateManifest
from site_updater.updates.operations import LocalFileSystem, relative_posix
from site_updater.updates.process import SubprocessRunner, split_command

if TYPE_CHECKING:
    from site_updater.config import UpdaterConfig
    from site_updater.context import OperationContext
    from site_updater.updates.capabilities import Archiver, FileSystem, ProcessRunner

logger = get_logger(__name__)

SCRATCH_DIRNAME = "extract"


class Installer:
    """
    Applies update artifacts to the live tree.

    Args:
        config: Updater configuration.
        archiver: Archiver capability.
        fs: FileSystem capability.
        runner: ProcessRunner capability for post-install commands.
        dependencies: Dependency swapper (built from config/runner/fs if omitted).
        hooks: Hook runner (built from config/runner if omitted).
    """

    def __init__(
        self,
        config: UpdaterConfig,
        archiver: Archiver | None = None,
        fs: FileSystem | None = None,
        runner: ProcessRunner | None = None,
        dependencies: DependencySwapper | None = None,
        hooks: HookRunner | None = None,
    ) -> None:
        self.config = config
        self.archiver = archiver or ZipArchiver()
        self.fs = fs or LocalFileSystem()
        self.runner = runner or SubprocessRunner()
        self.dependencies = dependencies or DependencySwapper(config, self.runner, self.fs)
        self.hooks = hooks or HookRunner(config, self.runner)

    @property
    def scratch_dir(self) -> Path:
        return self.config.resolve(self.config.tmp_directory) / SCRATCH_DIRNAME

    def apply(
        self,
        archive: Path,
        manifest: UpdateManifest | None,
        ctx: OperationContext,
    ) -> UpdateManifest | None:
        """
        Install an artifact.

        Args:
            archive: Update artifact.
            manifest: Known manifest, or None to read it from the artifact.
            ctx: Operation context.

        Returns:
            The manifest used for the install (None if there was none).

        Raises:
            InstallError: If extraction, directory creation, file copy,
                dependency rebuild or the hook script fails.
        """
        scratch = self.scratch_dir
        try:
            manifest = self._install(archive, manifest, scratch, ctx)
            self.run_post_install_commands(ctx)
        finally:
            self._cleanup(scratch, ctx)

        try:
            self.fs.remove_file(archive)
        except OSError as e:
            ctx.warning(f"Failed to remove update artifact {archive.name}: {e}")
        ctx.info("Installation finished")
        return manifest

    def _install(
        self,
        archive: Path,
        manifest: UpdateManifest | None,
        scratch: Path,
        ctx: OperationContext,
    ) -> UpdateManifest | None:
        try:
            self.fs.remove_tree(scratch)
            self.archiver.extract_all(archive, scratch)
        except ARCHIVE_ERRORS as e:
            raise InstallError(
                f"Failed to extract update artifact: {e}",
                details={"archive": str(archive)},
            ) from e
        ctx.info(f"Extracted {archive.name}")

        manifest_path = scratch / self.config.manifest_filename
        if manifest is None and self.fs.is_file(manifest_path):
            try:
                manifest = UpdateManifest.from_file(manifest_path)
            except InvalidArgumentError as e:
                raise InstallError(e.message, details=e.details) from e
            ctx.info(f"Read update manifest for version {manifest.version}")

        swap = (
            manifest is not None
            and manifest.dependency_update
            and self.dependencies.can_swap(scratch, ctx)
        )
        skipped = set(self.dependencies.managed_paths) if swap else set()

        self._create_directories(scratch, skipped, ctx)
        self._copy_files(scratch, skipped, ctx)

        if manifest is not None and manifest.dependency_update:
            self.dependencies.swap(scratch, ctx)

        script_name = (manifest.script_name if manifest else None) or self.config.script_filename
        script = scratch / script_name
        if self.fs.is_file(script):
            self.hooks.run(script, ctx)
            self._remove_script(script, script_name, ctx)

        return manifest

    @staticmethod
    def _under(rel: str, prefixes: set[str]) -> bool:
        return any(rel == p or rel.startswith(p + "/") for p in prefixes)

    def _create_directories(self, scratch: Path, skipped: set[str], ctx: OperationContext) -> None:
        root = self.config.root_path
        created = 0
        for directory in self.fs.walk_dirs(scratch):
            rel = relative_posix(directory, scratch)
            if ctx.exclusions.is_excluded(rel) or self._under(rel, skipped):
                continue
            try:
                self.fs.make_dirs(root / rel)
            except OSError as e:
                raise InstallError(
                    f"Failed to create directory {rel}: {e}",
                    details={"path": rel},
                ) from e
            created += 1
        ctx.info(f"Prepared {created} directories")

    def _copy_files(self, scratch: Path, skipped: set[str], ctx: OperationContext) -> None:
        root = self.config.root_path
        copied = 0
        for source in self.fs.walk_files(scratch):
            rel = relative_posix(source, scratch)
            if rel == self.config.manifest_filename:
                continue
            if ctx.exclusions.is_excluded(rel) or self._under(rel, skipped):
                continue
            try:
                self.fs.copy_file(source, root / rel)
            except OSError as e:
                raise InstallError(
                    f"Failed to copy {rel}: {e}",
                    details={"path": rel, "copied": copied},
                ) from e
            copied += 1
        ctx.info(f"Copied {copied} files")

    def _remove_script(self, script: Path, script_name: str, ctx: OperationContext) -> None:
        live_copy = self.config.root_path / script_name
        for path in (script, live_copy):
            try:
                self.fs.remove_file(path)
            except OSError as e:
                ctx.warning(f"Failed to remove update script {path}: {e}")

    def run_post_install_commands(self, ctx: OperationContext) -> int:
        """
        Run configured post-install commands in order.

        Failures are recorded as warnings and never abort the install.

        Returns:
            Number of commands that failed.
        """
        failures = 0
        for command in self.config.post_update_commands:
            try:
                result = self.runner.run(
                    split_command(command),
                    cwd=self.config.root_path,
                    timeout=self.config.command_timeout,
                )
            except UnavailableError as e:
                failures += 1
                ctx.warning(f"Post-update command failed: {command} ({e.message})")
                continue
            if result.succeeded:
                ctx.info(f"Post-update command succeeded: {command}")
            else:
                failures += 1
                ctx.warning(
                    f"Post-update command failed: {command} (exit code {result.returncode})"
                )
        return failures

    def _cleanup(self, scratch: Path, ctx: OperationContext) -> None:
        try:
            self.fs.remove_tree(scratch)
        except OSError as e:
            ctx.warning(f"Failed to remove scratch directory: {e}")
