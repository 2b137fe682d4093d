"""
Zip container support for update artifacts and recovery containers.
"""

from __future__ import annotations

import shutil
import zipfile
from collections.abc import Iterable
from pathlib import Path

from site_updater.logging import get_logger

logger = get_logger(__name__)

# Errors raised when a container is missing, unreadable or lacks a member.
ARCHIVE_ERRORS: tuple[type[Exception], ...] = (OSError, zipfile.BadZipFile, KeyError)


class ZipArchiver:
    """
    Archiver capability backed by the standard zipfile module.

    list_entries() returns raw entry names exactly as stored; callers are
    responsible for validating them before writing anything to disk.
    extract_member() streams a single entry to an explicit destination path
    and therefore never interprets the entry name itself.
    """

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED) -> None:
        self.compression = compression

    def list_entries(self, archive: Path) -> list[str]:
        with zipfile.ZipFile(archive) as zf:
            return zf.namelist()

    def extract_all(self, archive: Path, destination: Path) -> None:
        destination.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(destination)
        logger.debug(
            "Extracted archive",
            extra={"archive": str(archive), "destination": str(destination)},
        )

    def extract_member(self, archive: Path, name: str, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive) as zf, zf.open(name) as src, open(destination, "wb") as dst:
            shutil.copyfileobj(src, dst)

    def create(self, archive: Path, members: Iterable[tuple[Path, str]]) -> None:
        """
        Write a new container.

        Args:
            archive: Path of the container to create (overwritten if present).
            members: (source file, entry name) pairs.
        """
        archive.parent.mkdir(parents=True, exist_ok=True)
        count = 0
        with zipfile.ZipFile(archive, "w", compression=self.compression) as zf:
            for source, arcname in members:
                zf.write(source, arcname)
                count += 1
        logger.debug(
            "Created archive",
            extra={"archive": str(archive), "entries": count},
        )
