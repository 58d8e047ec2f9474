"""Command-line interface for omnicheck."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import orjson
import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .checkers import CHECKERS, get_checker
from .config import OmniCheckConfig
from .diagnostics import Diagnostic
from .logging import configure_logging, get_logger
from .session import SessionManager

app = typer.Typer(help="Type-check Python files through interchangeable checker engines.")
LOGGER = get_logger(__name__)

CONFIG_FILE_NAME = "omnicheck.yaml"

_SEVERITY_STYLES = {"error": "bold red", "warning": "yellow", "info": "cyan"}


@app.callback()
def main() -> None:
    """omnicheck CLI root."""
    return None


def _load_yaml_config(directory: Path) -> dict[str, object]:
    config_path = directory / CONFIG_FILE_NAME
    if not config_path.exists():
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:  # pragma: no cover - yaml error path
        raise typer.BadParameter(f"Failed to parse {config_path}: {error}") from error
    if not isinstance(data, dict):
        raise typer.BadParameter(f"{CONFIG_FILE_NAME} must contain a mapping")
    return data


def _merge_config(directory: Path, cli_options: dict[str, object]) -> OmniCheckConfig:
    file_overrides = _load_yaml_config(directory)
    merged: dict[str, object] = {**file_overrides, **cli_options}
    if isinstance(merged.get("python_version"), float):
        # YAML reads an unquoted 3.10 as the float 3.1.
        raise typer.BadParameter("python_version must be quoted in omnicheck.yaml (for example \"3.12\")")
    try:
        config = OmniCheckConfig(**merged)
    except ValidationError as error:
        raise typer.BadParameter(str(error)) from error
    try:
        get_checker(config.checker)
    except ValueError as error:
        raise typer.BadParameter(str(error)) from error
    return config


async def _run_check(config: OmniCheckConfig, text: str) -> list[Diagnostic]:
    async with SessionManager(config) as manager:
        return await manager.check(text)


def _print_table(path: Path, diagnostics: list[Diagnostic]) -> None:
    console = Console()
    if not diagnostics:
        console.print(f"[green]No issues found in {path}[/green]")
        return
    table = Table(title=str(path))
    table.add_column("Line", justify="right")
    table.add_column("Col", justify="right")
    table.add_column("Severity")
    table.add_column("Source")
    table.add_column("Message", overflow="fold")
    for diagnostic in diagnostics:
        start = diagnostic.range.start if diagnostic.range else None
        table.add_row(
            str(start.line + 1) if start else "-",
            str(start.character + 1) if start else "-",
            f"[{_SEVERITY_STYLES[diagnostic.severity]}]{diagnostic.severity}[/]",
            diagnostic.source,
            diagnostic.message,
        )
    console.print(table)


@app.command("check")
def check(
    path: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False, readable=True, help="Python file to check."),
    checker: Optional[str] = typer.Option(None, help="Checker to run (see `omnicheck checkers`)."),
    python_version: Optional[str] = typer.Option(None, help="Python version to check against."),
    strict: Optional[bool] = typer.Option(None, "--strict/--no-strict", help="Enable strict mode."),
    as_json: bool = typer.Option(False, "--json", help="Print diagnostics as JSON."),
    log_level: Optional[str] = typer.Option(None, help="Log level."),
) -> None:
    file_path = path.resolve()
    cli_options: dict[str, object] = {
        key: value
        for key, value in {
            "checker": checker,
            "python_version": python_version,
            "strict": strict,
            "log_level": log_level,
        }.items()
        if value is not None
    }
    config = _merge_config(file_path.parent, cli_options)
    configure_logging(config.log_level)

    text = file_path.read_text(encoding="utf-8")
    LOGGER.debug("Checking %s with %s", file_path, config.checker)
    diagnostics = asyncio.run(_run_check(config, text))

    if as_json:
        typer.echo(orjson.dumps([item.to_dict() for item in diagnostics], option=orjson.OPT_INDENT_2).decode("utf-8"))
    else:
        _print_table(file_path, diagnostics)
    if any(item.severity == "error" for item in diagnostics):
        raise typer.Exit(code=1)


@app.command("checkers")
def checkers() -> None:
    """List the available checkers."""
    table = Table(title="Checkers")
    table.add_column("Name")
    table.add_column("Description")
    table.add_column("Integration")
    for spec in CHECKERS.values():
        table.add_row(spec.kind.value, spec.label, spec.integration.value if spec.integration else "not integrated")
    Console().print(table)
