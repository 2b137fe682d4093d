"""
Configuration management for the site updater.

This module implements the AppConfig Pydantic model and configuration loading.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/site-updater/config.yml or --config path)
3. Environment variables (SITE_UPDATER_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_PATH = Path("/etc/site-updater/config.yml")
DEFAULT_ENV_PREFIX = "SITE_UPDATER_"


# =============================================================================
# Updater Configuration
# =============================================================================


class UpdaterConfig(BaseModel):
    """Update pipeline configuration.

    Relative paths are resolved against `app_root`.

    Attributes:
        app_root: Root directory of the live application tree.
        base_url: Remote base URL where update artifacts are published.
        tmp_directory: Scratch directory for downloads and extraction.
        recovery_directory: Directory holding recovery containers.
        script_filename: Name of the optional hook script inside an artifact.
        manifest_filename: Name of the manifest file inside an artifact.
        version_file: Name of the version/metadata record.
        default_version: Version recorded when no metadata record exists.
        excluded_paths: Path prefixes never touched by snapshot or install.
        post_update_commands: Commands run after a successful install.
        cache_clear_commands: Commands run by the clear-cache operation.
        online_check: Whether remote update checks are enabled.
        check_method: HTTP method used for the update check.
        request_timeout: Network timeout in seconds.
        command_timeout: Timeout for post-install and cache commands.
        hook_timeout: Timeout for the hook script subprocess.
        dependency_dir: Vendored dependency directory swapped as one unit.
        dependency_descriptors: The two descriptor files shipped with it.
        dependency_rebuild_command: Command rebuilding the dependency tree.
        dependency_rebuild_timeout: Timeout for the rebuild command.
    """

    app_root: str = Field(
        default=".",
        description="Root directory of the live application tree",
    )
    base_url: str = Field(
        default="http://localhost/updates",
        description="Remote base URL where update artifacts are published",
    )
    tmp_directory: str = Field(
        default="updater_tmp",
        description="Scratch directory (relative to app_root)",
    )
    recovery_directory: str = Field(
        default="storage/updater/recovery",
        description="Directory for recovery containers (relative to app_root)",
    )
    script_filename: str = Field(
        default="upgrade.py",
        description="Hook script filename executed after file installation",
    )
    manifest_filename: str = Field(
        default="update.json",
        description="Manifest filename inside the update artifact",
    )
    version_file: str = Field(
        default="version.json",
        description="Version/metadata record filename (relative to app_root)",
    )
    default_version: str = Field(
        default="1.0.0",
        description="Version recorded when the metadata record is missing",
    )
    excluded_paths: list[str] = Field(
        default_factory=lambda: [".env", "storage", "cache"],
        description="Path prefixes never touched by snapshot or install",
    )
    post_update_commands: list[str] = Field(
        default_factory=list,
        description="Commands run after installation (best effort)",
    )
    cache_clear_commands: list[str] = Field(
        default_factory=list,
        description="Commands run by the clear-cache operation",
    )
    online_check: bool = Field(
        default=True,
        description="Enable online update checks",
    )
    check_method: str = Field(
        default="post",
        description="HTTP method for update checks: 'post' or 'get'",
    )
    request_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Network request timeout in seconds",
    )
    command_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Timeout for post-install and cache commands in seconds",
    )
    hook_timeout: float = Field(
        default=600.0,
        gt=0,
        description="Timeout for the hook script in seconds",
    )
    dependency_dir: str = Field(
        default="vendor",
        description="Vendored dependency directory",
    )
    dependency_descriptors: list[str] = Field(
        default_factory=lambda: ["requirements.txt", "requirements.lock"],
        description="Descriptor files replaced together with the dependency directory",
    )
    dependency_rebuild_command: str = Field(
        default="pip install --no-deps --target vendor -r requirements.lock",
        description="Command rebuilding the dependency directory",
    )
    dependency_rebuild_timeout: float = Field(
        default=3600.0,
        gt=0,
        description="Timeout for the dependency rebuild in seconds",
    )

    @field_validator("check_method")
    @classmethod
    def validate_check_method(cls, v: str) -> str:
        """Validate and normalize the update check method."""
        v_lower = v.lower()
        if v_lower not in {"get", "post"}:
            raise ValueError(f"Invalid check method: {v}. Must be one of: get, post")
        return v_lower

    @field_validator("dependency_descriptors")
    @classmethod
    def validate_dependency_descriptors(cls, v: list[str]) -> list[str]:
        """Exactly two descriptor files make up a dependency bundle."""
        if len(v) != 2:
            raise ValueError(
                f"dependency_descriptors must name exactly two files, got {len(v)}"
            )
        return v

    @property
    def root_path(self) -> Path:
        """Absolute path of the live application tree."""
        return Path(self.app_root).resolve()

    def resolve(self, relative: str) -> Path:
        """Resolve a configured path against the application root."""
        path = Path(relative)
        if path.is_absolute():
            return path
        return self.root_path / path


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseModel):
    """Database snapshot configuration.

    Attributes:
        url: SQLAlchemy database URL. None disables database snapshots.
        dump_format: Dump format: 'portable' (engine-aware) or 'basic'.
        batch_size: Rows per INSERT statement during restore.
    """

    url: str | None = Field(
        default=None,
        description="SQLAlchemy database URL (None disables database snapshots)",
    )
    dump_format: str = Field(
        default="portable",
        description="Dump format: 'portable' or 'basic'",
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        description="Rows per INSERT batch during restore",
    )

    @field_validator("dump_format")
    @classmethod
    def validate_dump_format(cls, v: str) -> str:
        """Validate dump format."""
        v_lower = v.lower()
        if v_lower not in {"portable", "basic"}:
            raise ValueError(
                f"Invalid dump format: {v}. Must be one of: basic, portable"
            )
        return v_lower


# =============================================================================
# Security Configuration
# =============================================================================


class SecurityConfig(BaseModel):
    """Operator authorization configuration.

    Attributes:
        allowed_operators: Operator identities permitted to trigger updates.
        operator_check_enabled: Set to False to disable the check entirely.
    """

    allowed_operators: list[str] = Field(
        default_factory=lambda: ["1"],
        description="Operator identities permitted to trigger updates",
    )
    operator_check_enabled: bool = Field(
        default=True,
        description="Disable to allow any operator (not recommended)",
    )

    @field_validator("allowed_operators", mode="before")
    @classmethod
    def normalize_operators(cls, v: Any) -> Any:
        """Accept a single identity and numeric identities (e.g. from env vars)."""
        if isinstance(v, str | int):
            v = [v]
        if isinstance(v, list):
            return [str(item) for item in v]
        return v


class LicenseConfig(BaseModel):
    """License details sent with artifact downloads.

    Attributes:
        key: License key. Headers are only sent when a key is configured.
        name: Licensee name.
        email: Licensee email.
    """

    key: str | None = Field(default=None, description="License key")
    name: str | None = Field(default=None, description="Licensee name")
    email: str | None = Field(default=None, description="Licensee email")

    def headers(self) -> dict[str, str]:
        """Build the license headers for artifact requests."""
        if not self.key:
            return {}
        headers = {"X-License-Key": self.key}
        if self.name:
            headers["X-License-Name"] = self.name
        if self.email:
            headers["X-License-Email"] = self.email
        return headers


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout.
        json_format: Whether to emit JSON records.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )
    json_format: bool = Field(
        default=True,
        description="Whether to emit JSON formatted records",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main configuration model.

    Attributes:
        updater: Update pipeline settings.
        database: Database snapshot settings.
        security: Operator authorization settings.
        license: License headers for downloads.
        logging: Logging configuration.
    """

    updater: UpdaterConfig = Field(
        default_factory=UpdaterConfig,
        description="Update pipeline settings",
    )
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig,
        description="Database snapshot settings",
    )
    security: SecurityConfig = Field(
        default_factory=SecurityConfig,
        description="Operator authorization settings",
    )
    license: LicenseConfig = Field(
        default_factory=LicenseConfig,
        description="License details for artifact downloads",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to an appropriate Python type.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (bool, int, float, list, or string).
    """
    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if "," in value:
        return [item.strip() for item in value.split(",")]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Nested keys use a double underscore separator, e.g.
    SITE_UPDATER_UPDATER__BASE_URL=https://updates.example.com.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        current[parts[-1]] = _parse_env_value(value)

    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse the configuration-related command-line arguments.

    Unknown arguments are ignored so the CLI can share argv with this parser.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--config", "-c", type=str)
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
    )
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--app-root", type=str)

    parsed, _ = parser.parse_known_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    if parsed.log_level:
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        result.setdefault("logging", {})["level"] = "debug"

    if parsed.app_root:
        result["updater"] = {"app_root": parsed.app_root}

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(config_path="/etc/site-updater/config.yml")
        >>> config.updater.excluded_paths
        ['.env', 'storage', 'cache']
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
