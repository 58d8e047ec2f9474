"""Primary and satellite worker entry points for the pooled engine.

One worker script serves both roles; the first message it receives is a boot
message naming the role. The primary hosts the engine adapter and asks its
host to spawn satellites, because a worker process cannot start processes of
its own. Each satellite receives one end of a pipe whose other end the
primary keeps, and runs type checks sent over it.
"""

from __future__ import annotations

import itertools
import multiprocessing
from multiprocessing.connection import Connection
from typing import Any, Mapping

import orjson

from ..adapter.dispatch import EngineAdapter
from ..adapter.serve import serve
from ..errors import EngineError
from ..logging import get_logger
from .base import EngineDiagnostic
from .mypy_runner import EngineSettings, MypyRunner
from .tree import VirtualTree
from .workspace import Workspace

LOGGER = get_logger(__name__)

CONFIG_FILE = "/workspace/omnicheck.json"
POOL_SOURCE = "mypy-pool"
DEFAULT_SATELLITE_TIMEOUT = 45.0


def _snapshot_config(files: Mapping[str, str]) -> dict[str, Any]:
    raw = files.get(CONFIG_FILE)
    return orjson.loads(raw) if raw else {}


def settings_from_snapshot(files: Mapping[str, str], cache_dir: str | None = None) -> tuple[EngineSettings, int]:
    """Read engine settings and the satellite count from the snapshot's config file."""
    config = _snapshot_config(files)
    stub_path = config.get("stubPath") or ""
    settings = EngineSettings(
        python_version=str(config.get("pythonVersion", "3.12")),
        strict=bool(config.get("strict", False)),
        mypy_path=[stub_path] if stub_path else [],
        typeshed_path=config.get("typeshedPath"),
        cache_dir=config.get("cacheDir", cache_dir),
    )
    return settings, int(config.get("satellites", 0))


class SatellitePool:
    """Primary-side view of the satellites: one pipe endpoint per satellite."""

    def __init__(self, host: Connection, *, timeout: float = DEFAULT_SATELLITE_TIMEOUT) -> None:
        self._host = host
        self.timeout = timeout
        self._endpoints: list[Connection] = []
        self._cursor = itertools.count()
        self._request_ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._endpoints)

    def spawn(self, count: int, initial_data: Mapping[str, Any]) -> None:
        for index in range(count):
            local, remote = multiprocessing.Pipe(duplex=True)
            self._host.send(
                {
                    "type": "spawn-request",
                    "initialData": {**initial_data, "index": index},
                    "endpoint": remote,
                }
            )
            remote.close()
            self._endpoints.append(local)
        LOGGER.info("Requested %d satellite worker(s)", count)

    def check(self, files: Mapping[str, str], target: str) -> list[EngineDiagnostic] | None:
        """Run a check on the next satellite; None when no satellite could answer."""
        while self._endpoints:
            index = next(self._cursor) % len(self._endpoints)
            endpoint = self._endpoints[index]
            request_id = next(self._request_ids)
            try:
                endpoint.send({"id": request_id, "op": "check", "files": dict(files), "target": target})
                if not endpoint.poll(self.timeout):
                    raise TimeoutError(f"satellite did not answer within {self.timeout}s")
                reply = endpoint.recv()
            except (EOFError, OSError, TimeoutError) as exc:
                LOGGER.warning("Dropping satellite %d: %s", index, exc)
                self._endpoints.pop(index).close()
                continue
            if reply.get("error"):
                raise EngineError(reply["error"])
            return reply["diagnostics"]
        return None

    def close(self) -> None:
        endpoints, self._endpoints = self._endpoints, []
        for endpoint in endpoints:
            endpoint.close()


def run_primary(host: Connection, *, cache_dir: str | None = None) -> None:
    pool = SatellitePool(host)
    workspaces: list[Workspace] = []

    def build(options: Mapping[str, Any]) -> Workspace:
        files = options.get("files") or {}
        settings, satellites = settings_from_snapshot(files, cache_dir)
        workspace: Workspace

        def check(documents: Mapping[str, str], target: str) -> list[EngineDiagnostic]:
            diagnostics = pool.check(documents, target)
            if diagnostics is None:
                return workspace.check_locally(documents, target)
            return diagnostics

        workspace = Workspace.from_snapshot(files, settings, checker=check)
        pool.timeout = float(_snapshot_config(files).get("satelliteTimeoutMs", DEFAULT_SATELLITE_TIMEOUT * 1000)) / 1000
        workspaces.append(workspace)
        if satellites and not len(pool):
            pool.spawn(satellites, {"files": dict(files), "settings": settings.to_dict()})
        return workspace

    adapter = EngineAdapter(build, host.send, source=POOL_SOURCE, push_diagnostics=True)
    host.send({"type": "ready", "role": "primary"})
    try:
        serve(host, adapter)
    finally:
        pool.close()
        for workspace in workspaces:
            workspace.close()


def run_satellite(host: Connection, initial_data: Mapping[str, Any], endpoint: Connection) -> None:
    settings = EngineSettings.from_dict(initial_data.get("settings") or {})
    tree = VirtualTree()
    for path, text in (initial_data.get("files") or {}).items():
        tree.write(path, text)
    runner = MypyRunner(tree, settings, cache_key=f"satellite-{initial_data.get('index', 0)}")
    host.send({"type": "ready", "role": "satellite"})
    try:
        while True:
            try:
                request = endpoint.recv()
            except (EOFError, OSError):
                break
            reply: dict[str, Any] = {"id": request.get("id")}
            try:
                reply["diagnostics"] = runner.check(request["files"], request["target"])
            except (EngineError, KeyError, OSError) as exc:
                LOGGER.error("Satellite check failed: %s", exc)
                reply["error"] = str(exc)
            endpoint.send(reply)
    finally:
        endpoint.close()
        tree.cleanup()


def pool_worker_main(host: Connection) -> None:
    """Entry point shared by the primary and every satellite."""
    boot = host.recv()
    if not isinstance(boot, dict) or boot.get("type") != "boot":
        LOGGER.error("Expected a boot message, got %r", boot)
        return
    role = boot.get("role")
    if role == "primary":
        run_primary(host)
    elif role == "satellite":
        run_satellite(host, boot.get("initialData") or {}, boot["endpoint"])
    else:
        LOGGER.error("Unknown worker role %r", role)


__all__ = ["POOL_SOURCE", "SatellitePool", "pool_worker_main", "run_primary", "run_satellite", "settings_from_snapshot"]
