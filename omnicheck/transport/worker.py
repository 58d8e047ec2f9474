"""Isolated execution contexts that talk to their creator only by message passing."""

from __future__ import annotations

import multiprocessing
import pickle
import threading
from abc import ABC, abstractmethod
from multiprocessing.connection import Connection
from typing import Any, Callable, Literal, Sequence

from ..errors import WorkerError
from ..logging import configure_logging, get_logger

LOGGER = get_logger(__name__)

WorkerEvent = Literal["message", "error"]
Listener = Callable[[Any], None]
WorkerTarget = Callable[[Connection], None]


class Worker(ABC):
    """Listener bookkeeping shared by worker implementations.

    Subclasses provide ``post_message`` and ``terminate`` and call ``_emit``
    from whatever context receives inbound data.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: dict[str, list[Listener]] = {"message": [], "error": []}
        self._lock = threading.Lock()

    def add_listener(self, event: WorkerEvent, listener: Listener) -> None:
        with self._lock:
            self._listeners[event].append(listener)

    def remove_listener(self, event: WorkerEvent, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

    @abstractmethod
    def post_message(self, message: Any, transfer: Sequence[Connection] = ()) -> None:
        """Send a message; connections in ``transfer`` are moved, not copied."""

    @abstractmethod
    def terminate(self) -> None:
        """Stop the worker and release its resources."""

    def _emit(self, event: WorkerEvent, payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners[event])
        for listener in listeners:
            listener(payload)


def run_worker(target: WorkerTarget, connection: Connection, log_level: str) -> None:
    """Process entry point: configure logging, then hand the pipe to ``target``."""
    configure_logging(log_level, show_process=True)
    try:
        target(connection)
    except KeyboardInterrupt:
        pass
    finally:
        connection.close()


class ProcessWorker(Worker):
    """A worker backed by a spawned interpreter and a duplex pipe.

    A single reader thread receives from the pipe, so listeners observe
    messages in the order the worker sent them.
    """

    def __init__(self, target: WorkerTarget, *, name: str, log_level: str = "INFO") -> None:
        super().__init__(name)
        context = multiprocessing.get_context("spawn")
        parent_connection, child_connection = context.Pipe(duplex=True)
        process = context.Process(
            target=run_worker,
            args=(target, child_connection, log_level),
            name=name,
            daemon=True,
        )
        try:
            process.start()
        except OSError as exc:
            parent_connection.close()
            raise WorkerError(f"Failed to start worker {name}: {exc}") from exc
        finally:
            child_connection.close()
        self._process = process
        self._connection = parent_connection
        self._send_lock = threading.Lock()
        self._terminated = False
        self._reader: threading.Thread | None = None
        LOGGER.debug("Started worker %s (pid %s)", name, process.pid)

    def add_listener(self, event: WorkerEvent, listener: Listener) -> None:
        super().add_listener(event, listener)
        if event == "message" and self._reader is None:
            self._reader = threading.Thread(target=self._read_loop, name=f"{self.name}-reader", daemon=True)
            self._reader.start()

    def post_message(self, message: Any, transfer: Sequence[Connection] = ()) -> None:
        with self._send_lock:
            self._connection.send(message)
        for endpoint in transfer:
            endpoint.close()

    def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        self._process.join(timeout=0.2)
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=2.0)
        self._connection.close()
        LOGGER.debug("Terminated worker %s", self.name)

    def _read_loop(self) -> None:
        while True:
            try:
                message = self._connection.recv()
            except (EOFError, OSError):
                if not self._terminated:
                    self._process.join(timeout=1.0)
                    self._emit(
                        "error",
                        WorkerError(f"Worker {self.name} exited unexpectedly (exit code {self._process.exitcode})"),
                    )
                return
            except pickle.UnpicklingError as exc:
                self._emit("error", WorkerError(f"Undecodable message from worker {self.name}: {exc}"))
                continue
            self._emit("message", message)


__all__ = ["ProcessWorker", "Worker", "WorkerEvent", "WorkerTarget", "run_worker"]
