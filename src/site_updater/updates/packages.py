"""
Standalone package installation into the dependency directory.

A package archive is unpacked to <dependency_dir>/<name>. Archives that wrap
their contents in a single top-level directory named after the package
(e.g. "widgets-1.4.0/") are unwrapped. An existing installation is moved
aside to <dependency_dir>/backup_<vendor>_<package>_<timestamp> rather than
deleted. No snapshot is taken.
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from site_updater.errors import InstallError, InvalidArgumentError
from site_updater.logging import get_logger
from site_updater.updates.archive import ARCHIVE_ERRORS, ZipArchiver
from site_updater.updates.operations import (
    LocalFileSystem,
    is_unsafe_relative_path,
    timestamp_slug,
)

if TYPE_CHECKING:
    from site_updater.config import UpdaterConfig
    from site_updater.context import OperationContext
    from site_updater.updates.capabilities import Archiver, FileSystem

logger = get_logger(__name__)

SCRATCH_DIRNAME = "package_extract"


def validate_package_name(name: str) -> str:
    """
    Normalize and validate a package name such as "acme/widgets".

    Raises:
        InvalidArgumentError: If the name is empty or escapes the dependency directory.
    """
    normalized = name.replace("\\", "/").strip("/")
    if not normalized or is_unsafe_relative_path(normalized) or "." in normalized.split("/"):
        raise InvalidArgumentError(
            f"Invalid package name: {name!r}",
            details={"name": name},
        )
    return normalized


class PackageInstaller:
    """
    Installs and inspects packages in the dependency directory.

    Args:
        config: Updater configuration.
        archiver: Archiver capability.
        fs: FileSystem capability.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        archiver: Archiver | None = None,
        fs: FileSystem | None = None,
    ) -> None:
        self.config = config
        self.archiver = archiver or ZipArchiver()
        self.fs = fs or LocalFileSystem()

    def package_path(self, name: str) -> Path:
        return self.config.resolve(self.config.dependency_dir) / validate_package_name(name)

    def package_exists(self, name: str) -> bool:
        """Whether <dependency_dir>/<name> is installed."""
        return self.fs.is_dir(self.package_path(name))

    def install_package(self, name: str, archive: Path, ctx: OperationContext) -> Path:
        """
        Install a package archive.

        Returns:
            The installed package directory.

        Raises:
            InvalidArgumentError: If the package name is invalid.
            InstallError: If extraction or copying fails.
        """
        normalized = validate_package_name(name)
        target = self.package_path(normalized)
        basename = PurePosixPath(normalized).name
        scratch = self.config.resolve(self.config.tmp_directory) / SCRATCH_DIRNAME

        ctx.info(f"Installing package {name}")
        try:
            try:
                self.fs.remove_tree(scratch)
                self.archiver.extract_all(archive, scratch)
            except ARCHIVE_ERRORS as e:
                raise InstallError(
                    f"Failed to extract package archive: {e}",
                    details={"archive": str(archive), "package": name},
                ) from e

            source = self._content_root(scratch, basename)
            try:
                if self.fs.exists(target):
                    backup = self.config.resolve(self.config.dependency_dir) / (
                        f"backup_{normalized.replace('/', '_')}_{timestamp_slug()}"
                    )
                    self.fs.move(target, backup)
                    ctx.info(f"Moved existing package to {backup.name}")
                self.fs.copy_tree(source, target)
            except OSError as e:
                raise InstallError(
                    f"Failed to install package {name}: {e}",
                    details={"package": name, "target": str(target)},
                ) from e
        finally:
            try:
                self.fs.remove_tree(scratch)
            except OSError as e:
                ctx.warning(f"Failed to remove package scratch directory: {e}")

        try:
            self.fs.remove_file(archive)
        except OSError as e:
            ctx.warning(f"Failed to remove package archive {archive.name}: {e}")
        ctx.info(f"Package {name} installed")
        return target

    def _content_root(self, scratch: Path, basename: str) -> Path:
        """Unwrap the only top-level directory when its name contains the package name."""
        dirs = self.fs.list_dirs(scratch)
        if len(dirs) == 1 and basename in dirs[0].name:
            return dirs[0]
        return scratch
