"""
Bootstrap executed inside the hook subprocess.

Usage:
    python -m site_updater.updates.hook_runner <script.py>

The script is executed as a module. If it defines a callable ``main``, that
function is called without arguments and its return value decides the
outcome: ``False`` is an explicit failure, anything else (including None)
is success.

Exit codes:
    0  success
    1  the script raised an exception
    2  usage error or missing script
    3  the script reported failure
"""

from __future__ import annotations

import runpy
import sys
import traceback
from pathlib import Path

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_REJECTED = 3


def run_hook(script: Path) -> int:
    """Execute a hook script and map its outcome to an exit code."""
    try:
        namespace = runpy.run_path(str(script), run_name="__site_updater_hook__")
        entry = namespace.get("main")
        result = entry() if callable(entry) else None
    except Exception:
        traceback.print_exc(file=sys.stderr)
        return EXIT_ERROR

    if result is False:
        print("hook reported failure", file=sys.stderr)
        return EXIT_REJECTED
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        print("usage: python -m site_updater.updates.hook_runner <script>", file=sys.stderr)
        return EXIT_USAGE
    script = Path(args[0])
    if not script.is_file():
        print(f"hook script not found: {script}", file=sys.stderr)
        return EXIT_USAGE
    return run_hook(script)


if __name__ == "__main__":
    sys.exit(main())
