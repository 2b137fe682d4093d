"""
Pytest configuration and shared fixtures for the site updater tests.
"""

from __future__ import annotations

import hashlib
import json
import zipfile
from collections.abc import Iterator
from pathlib import Path

import pytest

from site_updater.config import UpdaterConfig
from site_updater.context import OperationContext
from site_updater.updates.capabilities import ProcessResult
from site_updater.updates.maintenance import reset_maintenance_window


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture(autouse=True)
def _fresh_maintenance_window() -> Iterator[None]:
    reset_maintenance_window()
    yield
    reset_maintenance_window()


@pytest.fixture
def app_root(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    root.mkdir()
    return root


@pytest.fixture
def updater_config(app_root: Path) -> UpdaterConfig:
    return UpdaterConfig(
        app_root=str(app_root),
        base_url="https://updates.example.com/releases",
        excluded_paths=[".env", "storage", "cache"],
    )


@pytest.fixture
def ctx(updater_config: UpdaterConfig) -> OperationContext:
    return OperationContext.for_config(updater_config)


def write_tree(root: Path, files: dict[str, str | bytes]) -> None:
    """Create files (and parents) under root."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)


def make_zip(path: Path, files: dict[str, str | bytes], manifest: dict | None = None) -> Path:
    """Build a zip artifact; entries are written verbatim with writestr."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
        if manifest is not None:
            zf.writestr("update.json", json.dumps(manifest))
    return path


def tree_checksums(root: Path) -> dict[str, str]:
    """sha256 of every file under root, keyed by relative path."""
    return {
        p.relative_to(root).as_posix(): hashlib.sha256(p.read_bytes()).hexdigest()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


class FakeRunner:
    """
    ProcessRunner that records calls instead of spawning processes.

    Commands containing any of the `failing` substrings exit with status 1;
    `returncodes` maps a substring to a specific exit status.
    """

    def __init__(
        self,
        failing: tuple[str, ...] = (),
        returncodes: dict[str, int] | None = None,
    ) -> None:
        self.failing = failing
        self.returncodes = returncodes or {}
        self.calls: list[dict] = []

    def run(self, args, *, cwd=None, timeout=300.0, env=None) -> ProcessResult:
        command = " ".join(args)
        self.calls.append({"args": tuple(args), "cwd": cwd, "timeout": timeout, "env": env})
        returncode = 0
        for needle, code in self.returncodes.items():
            if needle in command:
                returncode = code
        if any(needle in command for needle in self.failing):
            returncode = 1
        return ProcessResult(
            args=tuple(args),
            returncode=returncode,
            stderr="boom" if returncode else "",
        )

    @property
    def commands(self) -> list[str]:
        return [" ".join(call["args"]) for call in self.calls]
