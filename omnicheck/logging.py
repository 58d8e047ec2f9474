"""Logging utilities."""

from __future__ import annotations

import logging
from typing import Iterable

from rich.console import Console
from rich.logging import RichHandler

_QUIET_LOGGERS = ("parso", "jedi", "blib2to3", "asyncio")


def configure_logging(level: str = "INFO", *, rich_tracebacks: bool = True, show_process: bool = False) -> None:
    """Configure the root logger for the CLI and for worker processes.

    Workers share the host's stderr, so they pass ``show_process`` to prefix
    records with the worker name.
    """
    console = Console(stderr=True)
    handler = RichHandler(console=console, rich_tracebacks=rich_tracebacks, markup=False)
    fmt = "[%(processName)s] %(message)s" if show_process else "%(message)s"
    logging.basicConfig(level=level.upper(), format=fmt, handlers=[handler], force=True)
    for noisy in _QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str, *extra_names: Iterable[str]) -> logging.Logger:
    """Return a namespaced logger."""
    namespace = ".".join([name, *extra_names]) if extra_names else name
    return logging.getLogger(namespace)


__all__ = ["configure_logging", "get_logger"]
