"""Own the active checker's transport and client.

A :class:`SessionManager` holds at most one :class:`CheckerSession`. Choosing
another checker or Python version tears the current session down completely
and builds a new one; nothing is reconfigured in place.
"""

from __future__ import annotations

import asyncio
import os
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable

from .checkers import CheckerKind, CheckerSpec, TransportFactory, default_transport_factory, get_checker
from .config import OmniCheckConfig
from .diagnostics import Diagnostic, error, info
from .errors import OmniCheckError, TransportClosedError
from .logging import get_logger
from .lsp_client.client import LspClient
from .lsp_client.messages import make_notification

LOGGER = get_logger(__name__)

DiagnosticsCallback = Callable[[list[Diagnostic]], None]

PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"


@dataclass(slots=True)
class WorkspaceSession:
    """Client-side view of the workspace: open documents and their versions."""

    root_uri: str
    python_version: str
    strict: bool
    documents: dict[str, int] = field(default_factory=dict)


class CheckerSession:
    """One transport plus the client speaking over it."""

    def __init__(
        self,
        spec: CheckerSpec,
        config: OmniCheckConfig,
        transport_factory: TransportFactory,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.spec = spec
        self.config = config
        self.workspace = WorkspaceSession(
            root_uri=config.root_uri,
            python_version=config.python_version,
            strict=config.strict,
        )
        self.closed = False
        self.failure: Exception | None = None
        self.released: asyncio.Future[None] | None = None
        self._loop = loop
        self._built = threading.Event()
        self.transport = transport_factory(spec, config, self._worker_failed)
        self.client = LspClient(self.transport, timeout=spec.request_timeout(config))
        self._built.set()
        if self.failure is not None:
            self._schedule_close()

    async def start(self) -> None:
        ready = getattr(self.transport, "ready", None)
        if isinstance(ready, Future):
            state = await asyncio.wrap_future(ready)
            LOGGER.debug("%s transport ready (%s)", self.spec.kind.value, getattr(state, "value", state))
        self.client.connect()
        await self.client.initialize(
            {
                "processId": os.getpid(),
                "rootUri": self.workspace.root_uri,
                "capabilities": {"textDocument": {"publishDiagnostics": {}, "diagnostic": {}}},
                "initializationOptions": {
                    "pythonVersion": self.workspace.python_version,
                    "strict": self.workspace.strict,
                    "cacheDir": self.config.cache_dir,
                },
            }
        )
        LOGGER.info("Started %s (python %s)", self.spec.label, self.workspace.python_version)

    def sync(self, uri: str, text: str) -> int:
        """Open ``uri`` or replace its whole text; returns the new document version."""
        version = self.workspace.documents.get(uri)
        if version is None:
            version = 1
            self.client.notify(
                "textDocument/didOpen",
                {"textDocument": {"uri": uri, "languageId": "python", "version": version, "text": text}},
            )
        else:
            version += 1
            self.client.notify(
                "textDocument/didChange",
                {"textDocument": {"uri": uri, "version": version}, "contentChanges": [{"text": text}]},
            )
        self.workspace.documents[uri] = version
        return version

    async def pull(self, uri: str) -> list[Diagnostic]:
        result = await self.client.request("textDocument/diagnostic", {"textDocument": {"uri": uri}})
        items = (result.get("items") or []) if isinstance(result, dict) else []
        return [Diagnostic.from_protocol(item, self.spec.source) for item in items]

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.client.disconnect()
        try:
            self.transport.send(make_notification("exit"))
        except (TransportClosedError, OSError) as exc:
            LOGGER.debug("Could not ask %s to exit: %s", self.spec.kind.value, exc)
        self.workspace.documents.clear()
        # Transport shutdown joins worker processes; it runs on the default executor.
        try:
            self.released = self._loop.run_in_executor(None, self.transport.close)
        except RuntimeError:
            self.transport.close()

    def _worker_failed(self, failure: Exception) -> None:
        self.failure = failure
        # A failure raised while the transport is still being built is handled
        # once construction finishes.
        if self._built.is_set():
            self._schedule_close()

    def _schedule_close(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self.close)
        except RuntimeError:
            LOGGER.debug("Event loop closed before handling worker failure: %s", self.failure)


class SessionManager:
    """Lifecycle owner for the active checker."""

    def __init__(self, config: OmniCheckConfig, *, transport_factory: TransportFactory | None = None) -> None:
        self.config = config
        self.spec = get_checker(config.checker)
        self.session: CheckerSession | None = None
        self.checking = False
        self._transport_factory = transport_factory or default_transport_factory
        self._callback: DiagnosticsCallback | None = None

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        session = self.session
        self.teardown()
        if session is not None and session.released is not None:
            await session.released

    def on_diagnostics(self, callback: DiagnosticsCallback) -> Callable[[], None]:
        """Route pushed diagnostics to ``callback``, replacing any previous one."""
        self._callback = callback

        def unsubscribe() -> None:
            if self._callback is callback:
                self._callback = None

        return unsubscribe

    async def select(self, checker: str | CheckerKind, python_version: str | None = None) -> None:
        self.teardown()
        spec = get_checker(checker)
        updates: dict[str, Any] = {"checker": spec.kind.value}
        if python_version is not None:
            updates["python_version"] = python_version
        self.config = OmniCheckConfig.model_validate({**self.config.model_dump(), **updates})
        self.spec = spec
        if spec.integrated:
            self.session = await self._start(spec)
        else:
            LOGGER.info("%s has no worker integration; checks will report that instead", spec.label)

    async def update_python_version(self, python_version: str) -> None:
        if python_version == self.config.python_version:
            return
        await self.select(self.spec.kind, python_version)

    async def check(self, text: str) -> list[Diagnostic]:
        spec = self.spec
        if not spec.integrated:
            return [info(f"{spec.label} is not integrated yet; no diagnostics were produced.", spec.source)]
        self.checking = True
        try:
            if self.session is None or self.session.closed:
                self.session = await self._start(spec)
            uri = self.config.document_uri
            self.session.sync(uri, text)
            return await self.session.pull(uri)
        except (OmniCheckError, OSError) as exc:
            LOGGER.error("Error running %s: %s", spec.kind.value, exc)
            if self.session is not None and self.session.closed:
                self.session = None
            return [error(f"Error running {spec.kind.value}: {exc}", spec.source)]
        finally:
            self.checking = False

    def teardown(self) -> None:
        session, self.session = self.session, None
        self.checking = False
        if session is not None:
            LOGGER.debug("Tearing down %s session", session.spec.kind.value)
            session.close()

    async def _start(self, spec: CheckerSpec) -> CheckerSession:
        loop = asyncio.get_running_loop()
        session = await asyncio.to_thread(CheckerSession, spec, self.config, self._transport_factory, loop)
        session.client.on_notification(PUBLISH_DIAGNOSTICS, self._handle_push)
        try:
            await session.start()
        except BaseException:
            session.close()
            raise
        return session

    def _handle_push(self, params: Any) -> None:
        if not isinstance(params, dict):
            return
        diagnostics = [Diagnostic.from_protocol(item, self.spec.source) for item in params.get("diagnostics") or []]
        self.checking = False
        if self._callback is not None:
            self._callback(diagnostics)


__all__ = ["CheckerSession", "DiagnosticsCallback", "SessionManager", "WorkspaceSession"]
