"""Transport for engines that run as a primary worker plus spawned satellites.

Boot protocol:

1. The primary worker is created and sent ``{"type": "boot", "role": "primary"}``.
2. The transport is ready once the primary acknowledges (``{"type": "ready"}``)
   or emits its first protocol message. A grace timer is an escape hatch that
   marks readiness as *degraded* rather than confirmed.
3. ``{"type": "spawn-request", "initialData", "endpoint"}`` from the primary
   creates a satellite worker, which is booted with the endpoint transferred
   to it. The endpoint is never retained here.
4. ``initialize`` requests are rewritten to point at the virtual workspace and
   carry the virtual filesystem snapshot.
"""

from __future__ import annotations

import copy
import itertools
import pickle
import threading
from concurrent.futures import Future
from enum import Enum
from functools import partial
from typing import Any, Callable

from ..errors import TransportClosedError, WorkerError
from ..logging import get_logger
from ..lsp_client.messages import Message
from .base import Transport
from .single import ErrorCallback, decode_inbound, encode_outbound
from .vfs import WORKSPACE_ROOT, WORKSPACE_URI
from .worker import Worker

LOGGER = get_logger(__name__)

BOOT = "boot"
READY = "ready"
SPAWN_REQUEST = "spawn-request"

WorkerFactory = Callable[[str], Worker]


class Role(str, Enum):
    PRIMARY = "primary"
    SATELLITE = "satellite"


class BootState(str, Enum):
    BOOTING = "booting"
    READY = "ready"
    DEGRADED = "degraded"
    FAILED = "failed"
    CLOSED = "closed"


class MultiWorkerTransport(Transport):
    """Own a primary worker and every satellite it asks for."""

    def __init__(
        self,
        worker_factory: WorkerFactory,
        *,
        files: dict[str, str],
        name: str = "omnicheck",
        grace_period: float = 0.5,
        on_error: ErrorCallback | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        super().__init__(on_close=on_close)
        self._worker_factory = worker_factory
        self._files = files
        self._name = name
        self._on_error = on_error
        self._state_lock = threading.Lock()
        self.state = BootState.BOOTING
        self.ready: Future[BootState] = Future()
        self.primary: Worker | None = None
        self.satellites: list[Worker] = []
        self._satellite_lock = threading.Lock()
        self._satellite_error_handlers: dict[Worker, Callable[[Any], None]] = {}
        self._satellite_numbers = itertools.count(1)
        self._timer = threading.Timer(grace_period, self._grace_elapsed)
        self._timer.daemon = True
        self._boot()

    def _boot(self) -> None:
        try:
            primary = self._worker_factory(f"{self._name}-primary")
        except (OSError, WorkerError) as exc:
            LOGGER.error("Failed to create primary worker: %s", exc)
            self._fail(exc)
            return
        self.primary = primary
        primary.add_listener("message", self._handle_message)
        primary.add_listener("error", self._handle_error)
        try:
            primary.post_message({"type": BOOT, "role": Role.PRIMARY.value})
        except OSError as exc:
            LOGGER.error("Failed to boot primary worker: %s", exc)
            self._fail(WorkerError(f"Failed to boot primary worker: {exc}"))
            return
        self._timer.start()

    def _transition(self, state: BootState) -> bool:
        with self._state_lock:
            if self.state is not BootState.BOOTING:
                return False
            self.state = state
        self._timer.cancel()
        return True

    def _mark_ready(self) -> None:
        if self._transition(BootState.READY):
            LOGGER.debug("Primary worker confirmed ready")
            self.ready.set_result(BootState.READY)

    def _grace_elapsed(self) -> None:
        if self._transition(BootState.DEGRADED):
            LOGGER.warning("Primary worker did not acknowledge boot in time; continuing in degraded readiness")
            self.ready.set_result(BootState.DEGRADED)

    def _fail(self, error: Exception) -> None:
        if self._transition(BootState.FAILED):
            self.ready.set_exception(error)
        if self._on_error is not None:
            self._on_error(error)

    def _handle_message(self, data: Any) -> None:
        if isinstance(data, dict) and data.get("type") == SPAWN_REQUEST:
            self._spawn_satellite(data)
            return
        if isinstance(data, dict) and data.get("type") == READY:
            self._mark_ready()
            return
        message = decode_inbound(data)
        if message is None:
            LOGGER.debug("Dropping non-protocol message from primary: %r", data)
            return
        self._mark_ready()
        self._deliver(message)

    def _handle_error(self, error: WorkerError) -> None:
        LOGGER.error("Primary worker error: %s", error)
        self._fail(error)

    def _spawn_satellite(self, request: dict[str, Any]) -> None:
        endpoint = request.get("endpoint")
        if endpoint is None or self.closed:
            LOGGER.warning("Ignoring spawn request without endpoint or after close")
            return
        name = f"{self._name}-satellite-{next(self._satellite_numbers)}"
        try:
            satellite = self._worker_factory(name)
        except (OSError, WorkerError) as exc:
            LOGGER.error("Failed to create satellite worker %s: %s", name, exc)
            endpoint.close()
            return
        on_error = partial(self._handle_satellite_error, satellite)
        with self._satellite_lock:
            self.satellites.append(satellite)
            self._satellite_error_handlers[satellite] = on_error
        satellite.add_listener("message", self._handle_satellite_message)
        satellite.add_listener("error", on_error)
        try:
            satellite.post_message(
                {
                    "type": BOOT,
                    "role": Role.SATELLITE.value,
                    "initialData": request.get("initialData"),
                    "endpoint": endpoint,
                },
                transfer=[endpoint],
            )
        except (OSError, WorkerError, pickle.PicklingError) as exc:
            LOGGER.error("Failed to boot satellite worker %s: %s", name, exc)
            endpoint.close()
            self._drop_satellite(satellite)
            return
        LOGGER.debug("Spawned %s", name)

    def _handle_satellite_message(self, data: Any) -> None:
        LOGGER.debug("Satellite message: %r", data)

    def _handle_satellite_error(self, satellite: Worker, error: Exception) -> None:
        LOGGER.warning("Satellite worker %s failed: %s", satellite.name, error)
        self._drop_satellite(satellite)

    def _drop_satellite(self, satellite: Worker) -> None:
        with self._satellite_lock:
            if satellite not in self.satellites:
                return
            self.satellites.remove(satellite)
            on_error = self._satellite_error_handlers.pop(satellite)
        satellite.remove_listener("message", self._handle_satellite_message)
        satellite.remove_listener("error", on_error)
        satellite.terminate()

    def _post(self, message: Message) -> None:
        if self.primary is None:
            raise TransportClosedError("Primary worker not initialized")
        if message.get("method") == "initialize":
            message = self._rewrite_initialize(message)
        encode_outbound(self.primary, message)

    def _rewrite_initialize(self, message: Message) -> Message:
        rewritten = copy.deepcopy(message)
        params = rewritten.setdefault("params", {})
        params["rootUri"] = WORKSPACE_URI
        params["rootPath"] = WORKSPACE_ROOT
        params["workspaceFolders"] = [{"uri": WORKSPACE_URI, "name": "workspace"}]
        params["initializationOptions"] = {"files": dict(self._files)}
        return rewritten

    def _shutdown(self) -> None:
        self._timer.cancel()
        if self._transition(BootState.CLOSED):
            self.ready.set_exception(TransportClosedError("Transport closed before the primary worker was ready"))
        self.state = BootState.CLOSED
        if self.primary is not None:
            self.primary.remove_listener("message", self._handle_message)
            self.primary.remove_listener("error", self._handle_error)
            self.primary.terminate()
            self.primary = None
        for satellite in list(self.satellites):
            self._drop_satellite(satellite)


__all__ = ["BootState", "MultiWorkerTransport", "Role", "WorkerFactory"]
