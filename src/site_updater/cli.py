"""
Command line interface for the site updater.

Usage:
    site-updater [--config PATH] [--app-root DIR] [--log-level LEVEL]
                 [--operator ID] COMMAND [ARGS]

Commands print a JSON document to stdout. The exit status is 0 on success,
1 when the operation ran but did not succeed, and 2 on an updater or
configuration error.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

import yaml
from pydantic import ValidationError

from site_updater import __version__
from site_updater.config import load_config
from site_updater.errors import InvalidArgumentError, UpdaterError
from site_updater.logging import get_logger, setup_logging
from site_updater.service import UpdaterService

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="site-updater",
        description="Transactional in-place updates for a deployed application",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", "-c", help="Path to YAML configuration file")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Log level",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--app-root", help="Application root directory")
    parser.add_argument("--operator", help="Identity of the operator running the command")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status", help="Show installed version and updater state")
    commands.add_parser("check", help="Check the update server for a newer version")

    update = commands.add_parser("update", help="Run an update transaction")
    source = update.add_mutually_exclusive_group()
    source.add_argument("--remote", help="Artifact name relative to the base URL")
    source.add_argument("--file", help="Local artifact path")

    commands.add_parser("recover", help="Restore the current recovery container")

    install = commands.add_parser("install-package", help="Install a dependency package")
    install.add_argument("name", help="Package name, e.g. acme/widgets")
    install.add_argument("archive", help="Package archive path")

    exists = commands.add_parser("package-exists", help="Check whether a package is installed")
    exists.add_argument("name")

    commands.add_parser("clear-cache", help="Run the cache-clearing commands")

    license_parser = commands.add_parser("verify-license", help="Verify the license key")
    license_parser.add_argument("--key", help="License key (defaults to configuration)")
    return parser


def run_command(service: UpdaterService, args: argparse.Namespace) -> tuple[int, Any]:
    """Dispatch a parsed command; returns (exit status, JSON-serializable output)."""
    operator = args.operator
    if args.command == "status":
        return 0, service.status()
    if args.command == "check":
        return 0, service.check_for_update(operator)
    if args.command == "update":
        result = service.trigger_update(operator, remote_name=args.remote, archive_path=args.file)
        return (0 if result.succeeded else 1), result.model_dump(mode="json")
    if args.command == "recover":
        outcome = service.trigger_recovery(operator)
        return (0 if outcome["status"] == "restored" else 1), outcome
    if args.command == "install-package":
        return 0, service.install_package(operator, args.name, args.archive)
    if args.command == "package-exists":
        found = service.package_exists(args.name)
        return (0 if found else 1), {"name": args.name, "exists": found}
    if args.command == "clear-cache":
        ok = service.clear_cache(operator)
        return (0 if ok else 1), {"cleared": ok}
    if args.command == "verify-license":
        outcome = service.verify_license(args.key)
        return (0 if outcome.get("valid") else 1), outcome
    raise ValueError(f"Unknown command: {args.command}")


def _print_error(error: UpdaterError) -> None:
    print(json.dumps({"error": error.to_dict()}, indent=2, default=str), file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    args = build_parser().parse_args(argv)

    try:
        config = load_config(cli_args=argv)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        _print_error(
            InvalidArgumentError(
                f"Invalid configuration: {e}",
                details={"error_type": type(e).__name__},
            )
        )
        return 2
    setup_logging(config.logging)

    try:
        service = UpdaterService(config)
        status, output = run_command(service, args)
    except UpdaterError as e:
        logger.error("Command failed", extra={"command": args.command, "error_code": e.error_code})
        _print_error(e)
        return 2

    print(json.dumps(output, indent=2, default=str))
    return status


if __name__ == "__main__":
    sys.exit(main())
