"""
Post-extraction hook execution.

A hook script shipped inside an artifact is executed in an isolated Python
subprocess (see site_updater.updates.hook_runner). The only channel back to
the updater is the exit code; output is captured and kept out of the
operation log.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from site_updater.errors import InstallError, UnavailableError
from site_updater.logging import get_logger
from site_updater.updates.hook_runner import EXIT_OK, EXIT_REJECTED
from site_updater.updates.process import SubprocessRunner

if TYPE_CHECKING:
    from site_updater.config import UpdaterConfig
    from site_updater.context import OperationContext
    from site_updater.updates.capabilities import ProcessRunner

logger = get_logger(__name__)

HOOK_MODULE = "site_updater.updates.hook_runner"
_STDERR_TAIL = 2000


class HookRunner:
    """
    Runs hook scripts through the hook_runner bootstrap.

    Args:
        config: Updater configuration (app root, hook timeout).
        runner: ProcessRunner capability.
        python: Interpreter used for the subprocess.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        runner: ProcessRunner | None = None,
        python: str | None = None,
    ) -> None:
        self.config = config
        self.runner = runner or SubprocessRunner()
        self.python = python or sys.executable

    def command(self, script: Path) -> list[str]:
        return [self.python, "-m", HOOK_MODULE, str(script)]

    def run(self, script: Path, ctx: OperationContext) -> None:
        """
        Execute a hook script.

        Raises:
            InstallError: If the script reports failure, raises, or cannot run.
        """
        env = dict(os.environ)
        env["SITE_UPDATER_APP_ROOT"] = str(self.config.root_path)
        ctx.info(f"Running update script {script.name}")
        try:
            result = self.runner.run(
                self.command(script),
                cwd=self.config.root_path,
                timeout=self.config.hook_timeout,
                env=env,
            )
        except UnavailableError as e:
            raise InstallError(
                f"Update script could not run: {e.message}",
                details={"script": script.name, **e.details},
            ) from e

        if result.returncode == EXIT_OK:
            ctx.info(f"Update script {script.name} completed")
            return

        details = {
            "script": script.name,
            "returncode": result.returncode,
            "stderr": result.stderr[-_STDERR_TAIL:],
        }
        if result.returncode == EXIT_REJECTED:
            raise InstallError(f"Update script {script.name} reported failure", details=details)
        raise InstallError(
            f"Update script {script.name} failed with exit code {result.returncode}",
            details=details,
        )
