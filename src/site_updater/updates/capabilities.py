"""
Capability interfaces injected into the update pipeline components.

Each component depends on the narrowest interface it needs instead of reaching
for the filesystem, archives, HTTP, subprocesses or the database directly.
Default implementations live in:

- FileSystem: site_updater.updates.operations.LocalFileSystem
- Archiver: site_updater.updates.archive.ZipArchiver
- HttpFetcher: site_updater.updates.fetcher.HttpxFetcher
- ProcessRunner: site_updater.updates.process.SubprocessRunner
- Database: site_updater.updates.database.SqlAlchemyDatabase

Tests substitute fakes for any of them.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ProcessResult:
    """
    Outcome of an external command.

    Attributes:
        args: The command that was executed.
        returncode: Process exit code.
        stdout: Decoded standard output.
        stderr: Decoded standard error.
    """

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        """Whether the command exited with status 0."""
        return self.returncode == 0


@runtime_checkable
class FileSystem(Protocol):
    """Filesystem operations used by snapshot, install and recovery."""

    def exists(self, path: Path) -> bool: ...

    def is_dir(self, path: Path) -> bool: ...

    def is_file(self, path: Path) -> bool: ...

    def make_dirs(self, path: Path) -> None: ...

    def copy_file(self, source: Path, destination: Path) -> None: ...

    def copy_tree(self, source: Path, destination: Path) -> None: ...

    def move(self, source: Path, destination: Path) -> None: ...

    def remove_file(self, path: Path) -> None: ...

    def remove_tree(self, path: Path) -> None: ...

    def walk_dirs(self, root: Path) -> list[Path]: ...

    def walk_files(self, root: Path) -> list[Path]: ...

    def list_files(self, directory: Path) -> list[Path]: ...

    def list_dirs(self, directory: Path) -> list[Path]: ...

    def mtime(self, path: Path) -> float: ...


@runtime_checkable
class Archiver(Protocol):
    """Zip-like container operations."""

    def list_entries(self, archive: Path) -> list[str]: ...

    def extract_all(self, archive: Path, destination: Path) -> None: ...

    def extract_member(self, archive: Path, name: str, destination: Path) -> None: ...

    def create(self, archive: Path, members: Iterable[tuple[Path, str]]) -> None: ...


@runtime_checkable
class HttpFetcher(Protocol):
    """Blocking HTTP access for artifacts and update information."""

    def download(
        self,
        url: str,
        destination: Path,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 60.0,
    ) -> Path: ...

    def request_json(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 60.0,
        payload: Mapping[str, Any] | None = None,
    ) -> Any: ...


@runtime_checkable
class ProcessRunner(Protocol):
    """Execution of external commands."""

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout: float = 300.0,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult: ...


class TableWriter(Protocol):
    """Write access to tables while integrity enforcement is disabled."""

    def drop_table(self, name: str) -> None: ...

    def execute_ddl(self, ddl: str) -> None: ...

    def create_table(self, name: str, columns: Mapping[str, Mapping[str, Any]]) -> None: ...

    def insert_rows(self, name: str, rows: Sequence[Mapping[str, Any]]) -> int: ...


@runtime_checkable
class Database(Protocol):
    """Relational database access for snapshots."""

    @property
    def dialect_name(self) -> str: ...

    def table_names(self) -> list[str]: ...

    def table_ddl(self, name: str) -> str: ...

    def table_columns(self, name: str) -> dict[str, dict[str, Any]]: ...

    def fetch_rows(self, name: str) -> list[dict[str, Any]]: ...

    def count_rows(self, name: str) -> int: ...

    def restoring(self) -> AbstractContextManager[TableWriter]: ...
