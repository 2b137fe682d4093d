"""
Filesystem operations for the site updater.

This module provides the LocalFileSystem capability used by snapshot capture,
installation and recovery, plus a few directory helpers shared by the
fetcher, the maintenance window and the version record.

Walk results are sorted so that directory creation happens parent-first and
file copies happen in a stable order.
"""

from __future__ import annotations

import os
import shutil
from datetime import UTC, datetime
from pathlib import Path

from site_updater.errors import FailedPreconditionError


def timestamp_slug(moment: datetime | None = None) -> str:
    """
    Format a timestamp for use in backup and container names.

    Microseconds are included so that two captures within the same second
    never collide.
    """
    moment = moment or datetime.now(UTC)
    return moment.strftime("%Y%m%d_%H%M%S_%f")


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions (default 0o755).

    Returns:
        The directory path.

    Raises:
        FailedPreconditionError: If directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise FailedPreconditionError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def relative_posix(path: Path, root: Path) -> str:
    """Return `path` relative to `root` using '/' separators."""
    return path.relative_to(root).as_posix()


def is_unsafe_relative_path(name: str) -> bool:
    """
    Whether an archive entry name could escape the directory it is written to.

    Rejects parent-directory segments, rooted paths (leading slash or
    backslash) and Windows drive letters.
    """
    candidate = name.replace("\\", "/")
    if candidate.startswith("/"):
        return True
    if len(candidate) >= 2 and candidate[1] == ":" and candidate[0].isalpha():
        return True
    return ".." in candidate.split("/")


def is_within(path: Path, root: Path) -> bool:
    """Whether `path` resolves to `root` or somewhere beneath it."""
    return path.resolve().is_relative_to(root.resolve())


class LocalFileSystem:
    """
    FileSystem capability backed by the local disk.

    Errors surface as OSError; callers translate them into the error type of
    the pipeline stage they belong to.
    """

    def exists(self, path: Path) -> bool:
        return path.exists()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def is_file(self, path: Path) -> bool:
        return path.is_file()

    def make_dirs(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def copy_file(self, source: Path, destination: Path) -> None:
        """Copy a single file, creating the destination's parents."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)

    def copy_tree(self, source: Path, destination: Path) -> None:
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)

    def move(self, source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination))

    def remove_file(self, path: Path) -> None:
        path.unlink(missing_ok=True)

    def remove_tree(self, path: Path) -> None:
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.exists():
            shutil.rmtree(path)

    def walk_dirs(self, root: Path) -> list[Path]:
        """All directories beneath `root` (excluding root), parents first."""
        found: list[Path] = []
        for dirpath, dirnames, _ in os.walk(root):
            found.extend(Path(dirpath) / name for name in dirnames)
        return sorted(found, key=lambda p: (len(p.parts), p.as_posix()))

    def walk_files(self, root: Path) -> list[Path]:
        """All regular files beneath `root`, in a stable order."""
        found: list[Path] = []
        for dirpath, _, filenames in os.walk(root):
            found.extend(Path(dirpath) / name for name in filenames)
        return sorted(found, key=lambda p: p.as_posix())

    def list_files(self, directory: Path) -> list[Path]:
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.is_file())

    def list_dirs(self, directory: Path) -> list[Path]:
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.iterdir() if p.is_dir())

    def mtime(self, path: Path) -> float:
        return path.stat().st_mtime
