"""
External command execution for the site updater.

Post-install commands, cache clearing, the dependency rebuild and the hook
subprocess all go through a ProcessRunner so tests can record or fail them.
"""

from __future__ import annotations

import shlex
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from site_updater.errors import UnavailableError
from site_updater.logging import get_logger
from site_updater.updates.capabilities import ProcessResult

logger = get_logger(__name__)


def split_command(command: str | Sequence[str]) -> list[str]:
    """Split a configured command line into argv form."""
    if isinstance(command, str):
        return shlex.split(command)
    return list(command)


class SubprocessRunner:
    """ProcessRunner capability backed by subprocess.run."""

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout: float = 300.0,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        """
        Run a command to completion.

        Args:
            args: Command and arguments.
            cwd: Working directory.
            timeout: Command timeout in seconds.
            env: Full environment for the child, or None to inherit.

        Returns:
            ProcessResult with exit code and decoded output.

        Raises:
            UnavailableError: If command times out or fails to execute.
        """
        argv = tuple(args)
        if not argv:
            raise UnavailableError("Empty command", details={"command": ""})

        logger.debug(
            "Running command",
            extra={"command": " ".join(argv), "cwd": str(cwd) if cwd else None},
        )
        try:
            completed = subprocess.run(
                argv,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                capture_output=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise UnavailableError(
                f"Command timed out after {timeout}s",
                details={"command": " ".join(argv)},
            ) from e
        except OSError as e:
            raise UnavailableError(
                f"Failed to execute command: {e}",
                details={"command": " ".join(argv)},
            ) from e

        return ProcessResult(
            args=argv,
            returncode=completed.returncode,
            stdout=completed.stdout.decode("utf-8", errors="replace"),
            stderr=completed.stderr.decode("utf-8", errors="replace"),
        )
