"""
Tests for the configuration module.

This test module validates:
- Configuration loading from YAML files
- Environment variable overrides
- CLI argument overrides
- Configuration precedence (defaults < YAML < env vars < CLI args)
- Pydantic model validation with invalid inputs
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from unittest import mock

import pytest
import yaml
from pydantic import ValidationError

from site_updater.config import (
    AppConfig,
    DatabaseConfig,
    LicenseConfig,
    LoggingConfig,
    SecurityConfig,
    UpdaterConfig,
    _deep_merge,
    _load_env_config,
    _load_yaml_config,
    _parse_cli_args,
    _parse_env_value,
    load_config,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Path for a temporary config file."""
    return tmp_path / "config.yml"


@pytest.fixture
def sample_yaml_config() -> dict[str, Any]:
    """Sample YAML configuration for testing."""
    return {
        "updater": {
            "app_root": "/srv/shop",
            "base_url": "https://updates.example.com/shop",
            "excluded_paths": [".env", "storage", "public/uploads"],
            "post_update_commands": ["python manage.py migrate", "python manage.py collectstatic"],
        },
        "database": {"url": "sqlite:////srv/shop/db.sqlite3", "dump_format": "basic"},
        "security": {"allowed_operators": ["1", "7"]},
    }


def _write_yaml(path: Path, data: dict[str, Any]) -> None:
    with open(path, "w") as f:
        yaml.dump(data, f)


# =============================================================================
# Tests for Default Configuration
# =============================================================================


class TestDefaultConfiguration:
    """Tests for default configuration values."""

    def test_app_config_defaults(self) -> None:
        config = AppConfig()

        assert config.updater.tmp_directory == "updater_tmp"
        assert config.updater.script_filename == "upgrade.py"
        assert config.updater.manifest_filename == "update.json"
        assert config.updater.version_file == "version.json"
        assert config.updater.default_version == "1.0.0"
        assert config.updater.online_check is True
        assert config.updater.request_timeout == 60.0
        assert config.updater.dependency_rebuild_timeout == 3600.0
        assert config.database.url is None
        assert config.logging.json_format is True

    def test_default_exclusions(self) -> None:
        config = UpdaterConfig()

        assert ".env" in config.excluded_paths
        assert "storage" in config.excluded_paths

    def test_security_config_defaults(self) -> None:
        config = SecurityConfig()

        assert config.allowed_operators == ["1"]
        assert config.operator_check_enabled is True

    def test_database_config_defaults(self) -> None:
        config = DatabaseConfig()

        assert config.dump_format == "portable"
        assert config.batch_size == 100

    def test_resolve_relative_to_app_root(self, tmp_path: Path) -> None:
        config = UpdaterConfig(app_root=str(tmp_path))

        assert config.resolve("updater_tmp") == tmp_path.resolve() / "updater_tmp"
        assert config.resolve("/var/backups") == Path("/var/backups")


# =============================================================================
# Tests for Configuration Validation
# =============================================================================


class TestConfigurationValidation:
    """Tests for configuration validation."""

    def test_log_level_validation_valid(self) -> None:
        for level in ["debug", "info", "warning", "error", "critical"]:
            assert LoggingConfig(level=level).level == level

    def test_log_level_warn_normalized(self) -> None:
        assert LoggingConfig(level="WARN").level == "warning"

    def test_log_level_validation_invalid(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="verbose")

    def test_check_method_normalized(self) -> None:
        assert UpdaterConfig(check_method="GET").check_method == "get"

    def test_check_method_invalid(self) -> None:
        with pytest.raises(ValidationError):
            UpdaterConfig(check_method="put")

    def test_dependency_descriptors_must_be_two(self) -> None:
        with pytest.raises(ValidationError):
            UpdaterConfig(dependency_descriptors=["requirements.txt"])

    def test_dump_format_invalid(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseConfig(dump_format="xml")

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseConfig(batch_size=0)

    def test_operators_accept_single_numeric_identity(self) -> None:
        assert SecurityConfig(allowed_operators=5).allowed_operators == ["5"]
        assert SecurityConfig(allowed_operators=[1, "admin"]).allowed_operators == ["1", "admin"]


class TestLicenseHeaders:
    """License headers are only sent with a configured key."""

    def test_no_key_no_headers(self) -> None:
        assert LicenseConfig(name="Acme").headers() == {}

    def test_full_headers(self) -> None:
        headers = LicenseConfig(key="K-123", name="Acme", email="ops@acme.test").headers()

        assert headers == {
            "X-License-Key": "K-123",
            "X-License-Name": "Acme",
            "X-License-Email": "ops@acme.test",
        }


# =============================================================================
# Tests for YAML Configuration Loading
# =============================================================================


class TestYAMLConfigLoading:
    """Tests for YAML configuration file loading."""

    def test_load_yaml_config_success(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        _write_yaml(temp_config_file, sample_yaml_config)

        result = _load_yaml_config(temp_config_file)

        assert result["updater"]["app_root"] == "/srv/shop"

    def test_load_yaml_config_file_not_found(self) -> None:
        with pytest.raises(FileNotFoundError):
            _load_yaml_config(Path("/nonexistent/config.yml"))

    def test_load_yaml_config_empty_file(self, temp_config_file: Path) -> None:
        temp_config_file.write_text("")

        assert _load_yaml_config(temp_config_file) == {}

    def test_load_config_with_yaml_file(
        self, temp_config_file: Path, sample_yaml_config: dict[str, Any]
    ) -> None:
        _write_yaml(temp_config_file, sample_yaml_config)

        config = load_config(config_path=temp_config_file, cli_args=[])

        assert config.updater.base_url == "https://updates.example.com/shop"
        assert config.updater.excluded_paths == [".env", "storage", "public/uploads"]
        assert len(config.updater.post_update_commands) == 2
        assert config.database.dump_format == "basic"
        assert config.security.allowed_operators == ["1", "7"]


# =============================================================================
# Tests for Environment Variable Loading
# =============================================================================


class TestEnvironmentVariableLoading:
    """Tests for environment variable configuration loading."""

    def test_parse_env_value_boolean(self) -> None:
        assert _parse_env_value("true") is True
        assert _parse_env_value("ON") is True
        assert _parse_env_value("no") is False

    def test_parse_env_value_numbers(self) -> None:
        assert _parse_env_value("42") == 42
        assert _parse_env_value("2.5") == 2.5

    def test_parse_env_value_list(self) -> None:
        assert _parse_env_value(".env, storage, cache") == [".env", "storage", "cache"]

    def test_parse_env_value_string(self) -> None:
        assert _parse_env_value("https://updates.example.com") == "https://updates.example.com"

    def test_load_env_config_nested(self) -> None:
        env_vars = {
            "SITE_UPDATER_UPDATER__BASE_URL": "https://mirror.example.com",
            "SITE_UPDATER_UPDATER__ONLINE_CHECK": "false",
            "SITE_UPDATER_DATABASE__BATCH_SIZE": "250",
        }

        with mock.patch.dict(os.environ, env_vars, clear=False):
            config_dict = _load_env_config()

        assert config_dict["updater"]["base_url"] == "https://mirror.example.com"
        assert config_dict["updater"]["online_check"] is False
        assert config_dict["database"]["batch_size"] == 250

    def test_numeric_operator_from_env(self, temp_config_file: Path) -> None:
        _write_yaml(temp_config_file, {})

        with mock.patch.dict(os.environ, {"SITE_UPDATER_SECURITY__ALLOWED_OPERATORS": "1"}):
            config = load_config(config_path=temp_config_file, cli_args=[])

        assert config.security.allowed_operators == ["1"]


# =============================================================================
# Tests for CLI Argument Parsing
# =============================================================================


class TestCLIArgumentParsing:
    """Tests for command-line argument parsing."""

    def test_parse_cli_args_config_path(self) -> None:
        assert _parse_cli_args(["--config", "/tmp/x.yml"])["_config_path"] == "/tmp/x.yml"

    def test_parse_cli_args_debug(self) -> None:
        assert _parse_cli_args(["--debug"])["logging"]["level"] == "debug"

    def test_parse_cli_args_app_root(self) -> None:
        assert _parse_cli_args(["--app-root", "/srv/app"])["updater"]["app_root"] == "/srv/app"

    def test_parse_cli_args_ignores_unknown(self) -> None:
        assert _parse_cli_args(["update", "--remote", "v1.2.0.zip"]) == {}


# =============================================================================
# Tests for Configuration Precedence
# =============================================================================


class TestConfigurationPrecedence:
    """Tests for configuration layering precedence."""

    def test_full_precedence_chain(self, temp_config_file: Path) -> None:
        """Test full precedence: defaults < YAML < env vars < CLI args."""
        _write_yaml(
            temp_config_file,
            {
                "updater": {"base_url": "https://yaml.example.com", "app_root": "/srv/yaml"},
                "logging": {"level": "info"},
            },
        )
        env_vars = {
            "SITE_UPDATER_UPDATER__BASE_URL": "https://env.example.com",
            "SITE_UPDATER_LOGGING__LEVEL": "warning",
        }

        with mock.patch.dict(os.environ, env_vars, clear=False):
            config = load_config(
                config_path=temp_config_file,
                cli_args=["--log-level", "error", "--app-root", "/srv/cli"],
            )

        assert config.logging.level == "error"
        assert config.updater.app_root == "/srv/cli"
        assert config.updater.base_url == "https://env.example.com"
        assert config.updater.tmp_directory == "updater_tmp"


class TestDeepMerge:
    """Tests for _deep_merge."""

    def test_deep_merge_nested(self) -> None:
        base = {"updater": {"a": 1, "b": 2}, "x": 1}
        override = {"updater": {"b": 3}}

        assert _deep_merge(base, override) == {"updater": {"a": 1, "b": 3}, "x": 1}

    def test_deep_merge_does_not_modify_original(self) -> None:
        base = {"updater": {"a": 1}}
        _deep_merge(base, {"updater": {"a": 2}})

        assert base == {"updater": {"a": 1}}
