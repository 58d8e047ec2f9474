"""Test doubles for workers and engines."""

from __future__ import annotations

import pickle
import threading
from multiprocessing import Pipe
from multiprocessing.connection import Connection
from typing import Any, Callable, Sequence

from omnicheck.engine.base import (
    AnalysisEngine,
    Completion,
    DocumentHighlight,
    EngineDiagnostic,
    EnginePosition,
    EngineRange,
    FileHandle,
    Hover,
    LocationLink,
    Severity,
    SignatureHelp,
)
from omnicheck.errors import StaleHandleError
from omnicheck.transport.worker import Worker


class RecordingWorker(Worker):
    """Worker that records outbound messages; tests push inbound ones with ``receive``."""

    def __init__(self, name: str = "fake", *, fail_post: bool = False, copy_messages: bool = False) -> None:
        super().__init__(name)
        self.posted: list[tuple[Any, list[Any]]] = []
        self.terminations = 0
        self.fail_post = fail_post
        self.copy_messages = copy_messages

    def post_message(self, message: Any, transfer: Sequence[Any] = ()) -> None:
        if self.fail_post:
            raise OSError("pipe closed")
        if self.copy_messages:
            pickle.dumps(message)
        self.posted.append((message, list(transfer)))

    def terminate(self) -> None:
        self.terminations += 1

    def receive(self, message: Any) -> None:
        self._emit("message", message)

    def fail(self, error: Exception) -> None:
        self._emit("error", error)


class ThreadWorker(Worker):
    """Run a worker target on a thread over a real pipe."""

    def __init__(self, target: Callable[[Connection], None], *, name: str = "thread-worker") -> None:
        super().__init__(name)
        self._connection, child = Pipe(duplex=True)
        self._child = child
        self._terminated = False
        self._thread = threading.Thread(target=self._run, args=(target,), daemon=True)
        self._reader = threading.Thread(target=self._read_loop, daemon=True)
        self._thread.start()
        self._reader.start()

    def _run(self, target: Callable[[Connection], None]) -> None:
        try:
            target(self._child)
        finally:
            self._child.close()

    def post_message(self, message: Any, transfer: Sequence[Connection] = ()) -> None:
        self._connection.send(message)
        for endpoint in transfer:
            endpoint.close()

    def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        self._thread.join(timeout=1.0)
        self._connection.close()

    def _read_loop(self) -> None:
        while True:
            try:
                message = self._connection.recv()
            except (EOFError, OSError):
                return
            self._emit("message", message)


def _range(line: int, start: int, end: int) -> EngineRange:
    return EngineRange(EnginePosition(line, start), EnginePosition(line, end))


class FakeEngine(AnalysisEngine):
    """Engine reporting one error per line containing ``bad``."""

    def __init__(self, options: Any = None) -> None:
        self.options = options
        self.files: dict[int, tuple[str, str]] = {}
        self.positions: list[EnginePosition] = []
        self._next = 1

    def _text(self, handle: FileHandle) -> str:
        if handle.id not in self.files:
            raise StaleHandleError(f"File handle {handle.id} is not open")
        return self.files[handle.id][1]

    def open_file(self, path: str, text: str) -> FileHandle:
        handle = FileHandle(self._next, path)
        self._next += 1
        self.files[handle.id] = (path, text)
        return handle

    def update_file(self, handle: FileHandle, text: str) -> None:
        self._text(handle)
        self.files[handle.id] = (handle.path, text)

    def close_file(self, handle: FileHandle) -> None:
        self._text(handle)
        del self.files[handle.id]

    def source_text(self, handle: FileHandle) -> str:
        return self._text(handle)

    def check_file(self, handle: FileHandle) -> list[EngineDiagnostic]:
        diagnostics = []
        for number, line in enumerate(self._text(handle).splitlines(), start=1):
            column = line.find("bad")
            if column >= 0:
                diagnostics.append(
                    EngineDiagnostic(f"bad on line {number}", Severity.ERROR, _range(number, column + 1, column + 4), "bad")
                )
            if "nowhere" in line:
                diagnostics.append(EngineDiagnostic("location unknown", Severity.WARNING, None))
            if "boom" in line:
                raise RuntimeError("engine exploded")
        return diagnostics

    def hover(self, handle: FileHandle, position: EnginePosition) -> Hover | None:
        self._text(handle)
        self.positions.append(position)
        return Hover(markdown="**fake**", range=_range(position.line, position.column, position.column + 1))

    def completions(self, handle: FileHandle, position: EnginePosition) -> list[Completion]:
        self._text(handle)
        return [Completion(name="fake_name", kind=3, detail="fake()")]

    def goto_definition(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]:
        self._text(handle)
        return [LocationLink(path="/file:/workspace/main.py", full_range=_range(1, 5, 10))]

    def goto_type_definition(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]:
        return [LocationLink(path="/workspace/types.py", full_range=_range(2, 1, 4))]

    def goto_declaration(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]:
        return []

    def goto_references(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]:
        return [LocationLink(path="file:///workspace/main.py", full_range=_range(3, 1, 2))]

    def document_highlights(self, handle: FileHandle, position: EnginePosition) -> list[DocumentHighlight]:
        return [DocumentHighlight(range=_range(1, 1, 4), kind=3)]

    def signature_help(self, handle: FileHandle, position: EnginePosition) -> SignatureHelp | None:
        return None

    def format(self, handle: FileHandle) -> str | None:
        text = self._text(handle)
        formatted = text.replace("  ", " ")
        return formatted if formatted != text else None
