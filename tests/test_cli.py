"""
Tests for the command line interface.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from conftest import make_zip, write_tree

from site_updater.cli import build_parser, main


@pytest.fixture
def config_file(tmp_path: Path, app_root: Path) -> Path:
    path = tmp_path / "config.yml"
    path.write_text(
        yaml.dump(
            {
                "updater": {"app_root": str(app_root), "online_check": False},
                "security": {"allowed_operators": ["1"]},
                "logging": {"log_to_stdout": False},
            }
        )
    )
    write_tree(app_root, {"app/main.py": "v1"})
    return path


def _run(capsys: pytest.CaptureFixture[str], argv: list[str]) -> tuple[int, dict, str]:
    status = main(argv)
    captured = capsys.readouterr()
    output = json.loads(captured.out) if captured.out.strip() else {}
    return status, output, captured.err


class TestParser:
    """Tests for argument parsing."""

    def test_update_sources_are_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["update", "--remote", "a.zip", "--file", "b.zip"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_install_package_arguments(self) -> None:
        args = build_parser().parse_args(["--operator", "1", "install-package", "acme/w", "w.zip"])

        assert (args.operator, args.name, args.archive) == ("1", "acme/w", "w.zip")


class TestCommands:
    """Tests for command execution."""

    def test_status(self, capsys: pytest.CaptureFixture[str], config_file: Path) -> None:
        status, output, _ = _run(capsys, ["--config", str(config_file), "status"])

        assert status == 0
        assert output["version"] == "1.0.0"
        assert output["state"] == "idle"

    def test_check_disabled(self, capsys: pytest.CaptureFixture[str], config_file: Path) -> None:
        status, output, _ = _run(
            capsys, ["--config", str(config_file), "--operator", "1", "check"]
        )

        assert status == 0
        assert output["status"] == "disabled"

    def test_update_from_file(
        self,
        tmp_path: Path,
        app_root: Path,
        capsys: pytest.CaptureFixture[str],
        config_file: Path,
    ) -> None:
        artifact = make_zip(tmp_path / "v1.2.0.zip", {"app/main.py": "v2"}, manifest={"version": "1.2.0"})

        status, output, _ = _run(
            capsys,
            ["--config", str(config_file), "--operator", "1", "update", "--file", str(artifact)],
        )

        assert status == 0
        assert output["status"] == "completed"
        assert output["new_version"] == "1.2.0"
        assert (app_root / "app/main.py").read_text() == "v2"

    def test_permission_denied(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str], config_file: Path
    ) -> None:
        status, _, err = _run(
            capsys,
            ["--config", str(config_file), "--operator", "2", "update", "--file", "x.zip"],
        )

        assert status == 2
        assert "\"error_code\": \"permission_denied\"" in err

    def test_recover_without_container(
        self, capsys: pytest.CaptureFixture[str], config_file: Path
    ) -> None:
        status, output, _ = _run(
            capsys, ["--config", str(config_file), "--operator", "1", "recover"]
        )

        assert status == 1
        assert output["status"] == "failed"

    def test_package_exists(self, capsys: pytest.CaptureFixture[str], config_file: Path) -> None:
        status, output, _ = _run(
            capsys, ["--config", str(config_file), "package-exists", "acme/widgets"]
        )

        assert status == 1
        assert output == {"name": "acme/widgets", "exists": False}

    def test_app_root_override(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str], config_file: Path
    ) -> None:
        other = tmp_path / "other"
        write_tree(other, {"version.json": json.dumps({"version": "3.1.4"})})

        status, output, _ = _run(
            capsys, ["--config", str(config_file), "--app-root", str(other), "status"]
        )

        assert status == 0
        assert output["version"] == "3.1.4"


class TestConfigurationErrors:
    """Configuration problems are reported as JSON errors."""

    def test_missing_config_file(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        status, output, err = _run(
            capsys, ["--config", str(tmp_path / "missing.yml"), "status"]
        )

        assert status == 2
        assert output == {}
        error = json.loads(err)["error"]
        assert error["error_code"] == "invalid_argument"
        assert error["details"]["error_type"] == "FileNotFoundError"

    def test_invalid_config_value(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "config.yml"
        path.write_text(yaml.dump({"database": {"dump_format": "xml"}}))

        status, _, err = _run(capsys, ["--config", str(path), "status"])

        assert status == 2
        assert json.loads(err)["error"]["details"]["error_type"] == "ValidationError"
