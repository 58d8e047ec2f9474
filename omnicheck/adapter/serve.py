"""Worker-side loop that feeds pipe messages to an engine adapter."""

from __future__ import annotations

from multiprocessing.connection import Connection
from typing import Any, Mapping

import orjson

from ..engine.mypy_runner import EngineSettings
from ..engine.workspace import Workspace
from ..logging import get_logger
from ..lsp_client.messages import is_protocol_message
from .dispatch import EngineAdapter

LOGGER = get_logger(__name__)

WORKER_READY = {"type": "worker-ready"}


def _decode(data: Any) -> dict[str, Any] | None:
    if isinstance(data, (str, bytes)):
        try:
            data = orjson.loads(data)
        except orjson.JSONDecodeError:
            LOGGER.warning("Dropping undecodable message: %r", data)
            return None
    return data if is_protocol_message(data) else None


def serve(connection: Connection, adapter: EngineAdapter) -> None:
    """Handle protocol messages until the host hangs up or ``exit`` arrives."""
    while adapter.running:
        try:
            data = connection.recv()
        except (EOFError, OSError):
            LOGGER.debug("Host connection closed")
            break
        message = _decode(data)
        if message is None:
            continue
        adapter.handle(message)


def workspace_factory(source: str, cache_dir: str | None = None):
    """Return an engine factory reading ``pythonVersion``/``strict`` from initialization options."""

    def build(options: Mapping[str, Any]) -> Workspace:
        settings = EngineSettings(
            python_version=str(options.get("pythonVersion", "3.12")),
            strict=bool(options.get("strict", False)),
            cache_dir=options.get("cacheDir", cache_dir),
        )
        LOGGER.info("Starting %s workspace (python %s)", source, settings.python_version)
        return Workspace("/", settings)

    return build


def single_worker_main(connection: Connection, source: str = "mypy") -> None:
    """Entry point for single-worker engines."""
    adapter = EngineAdapter(workspace_factory(source), connection.send, source=source)
    connection.send(WORKER_READY)
    try:
        serve(connection, adapter)
    finally:
        if isinstance(adapter.engine, Workspace):
            adapter.engine.close()


__all__ = ["WORKER_READY", "serve", "single_worker_main", "workspace_factory"]
