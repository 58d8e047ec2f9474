"""CLI behaviour through typer's runner."""

from __future__ import annotations

from pathlib import Path

import orjson
import pytest
from typer.testing import CliRunner

from omnicheck.cli import app


@pytest.fixture()
def source_file(tmp_path: Path) -> Path:
    path = tmp_path / "main.py"
    path.write_text('result: int = "text"\n', encoding="utf-8")
    return path


def test_checkers_lists_registry() -> None:
    result = CliRunner().invoke(app, ["checkers"])
    assert result.exit_code == 0, result.output
    for name in ("mypy", "mypy-pool", "pyright", "pyrefly"):
        assert name in result.stdout


def test_unintegrated_checker_prints_info(source_file: Path) -> None:
    result = CliRunner().invoke(app, ["check", str(source_file), "--checker", "pyright", "--json"])
    assert result.exit_code == 0, result.output
    [diagnostic] = orjson.loads(result.stdout)
    assert diagnostic["severity"] == "info"
    assert diagnostic["source"] == "pyright"
    assert diagnostic["range"] is None


def test_yaml_config_is_merged(source_file: Path) -> None:
    (source_file.parent / "omnicheck.yaml").write_text('checker: pyrefly\npython_version: "3.11"\n', encoding="utf-8")
    result = CliRunner().invoke(app, ["check", str(source_file), "--json"])
    assert result.exit_code == 0, result.output
    [diagnostic] = orjson.loads(result.stdout)
    assert diagnostic["source"] == "pyrefly"


def test_cli_options_override_yaml(source_file: Path) -> None:
    (source_file.parent / "omnicheck.yaml").write_text("checker: pyrefly\n", encoding="utf-8")
    result = CliRunner().invoke(app, ["check", str(source_file), "--checker", "pyright", "--json"])
    assert result.exit_code == 0, result.output
    assert orjson.loads(result.stdout)[0]["source"] == "pyright"


def test_unknown_checker_is_rejected(source_file: Path) -> None:
    result = CliRunner().invoke(app, ["check", str(source_file), "--checker", "pylint"])
    assert result.exit_code != 0


def test_unquoted_yaml_version_is_rejected(source_file: Path) -> None:
    (source_file.parent / "omnicheck.yaml").write_text("python_version: 3.10\n", encoding="utf-8")
    result = CliRunner().invoke(app, ["check", str(source_file), "--checker", "pyright"])
    assert result.exit_code != 0


def test_table_output(source_file: Path) -> None:
    result = CliRunner().invoke(app, ["check", str(source_file), "--checker", "pyrefly"])
    assert result.exit_code == 0, result.output
    assert "pyrefly" in result.stdout


def test_mypy_errors_set_exit_code(source_file: Path, tmp_path: Path) -> None:
    cache = tmp_path / "cache"
    (source_file.parent / "omnicheck.yaml").write_text(f"cache_dir: {cache.as_posix()}\n", encoding="utf-8")
    result = CliRunner().invoke(app, ["check", str(source_file), "--checker", "mypy", "--json", "--log-level", "WARNING"])
    assert result.exit_code == 1, result.output
    [diagnostic] = orjson.loads(result.stdout)
    assert diagnostic["severity"] == "error"
    assert diagnostic["source"] == "mypy"
    assert diagnostic["range"]["start"]["line"] == 0
