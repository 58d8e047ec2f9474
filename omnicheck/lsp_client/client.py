"""Asyncio JSON-RPC client speaking over a worker transport."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Callable

from ..errors import RequestTimeoutError, ResponseError, SessionClosedError, TransportClosedError
from ..logging import get_logger
from ..transport.base import Transport
from .messages import ErrorCode, Message, make_error, make_notification, make_request, make_response

LOGGER = get_logger(__name__)

NotificationHandler = Callable[[Any], None]

# Server-to-client requests answered with a null result.
_ACKNOWLEDGED_REQUESTS = frozenset({"window/workDoneProgress/create", "client/registerCapability"})


@dataclass(slots=True)
class PendingRequest:
    id: int
    method: str
    future: asyncio.Future[Any]
    deadline: float


class LspClient:
    """Correlates requests with responses and routes server notifications.

    Inbound messages may arrive on a transport thread; they are handed to the
    event loop the client was connected on before any future is touched.
    """

    def __init__(self, transport: Transport, *, timeout: float = 10.0) -> None:
        self.transport = transport
        self.timeout = timeout
        self.server_capabilities: dict[str, Any] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}
        self._handlers: dict[str, list[NotificationHandler]] = {}
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def pending(self) -> list[PendingRequest]:
        return list(self._pending.values())

    def connect(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.transport.subscribe(self._receive)
        self._connected = True

    def disconnect(self) -> None:
        """Detach from the transport and reject every request still in flight."""
        if not self._connected:
            return
        self._connected = False
        self.transport.unsubscribe(self._receive)
        pending, self._pending = self._pending, {}
        for request in pending.values():
            if not request.future.done():
                request.future.set_exception(SessionClosedError(f"Session closed before {request.method} completed"))

    def on_notification(self, method: str, handler: NotificationHandler) -> Callable[[], None]:
        """Register a handler for ``method``; the returned callable removes it."""
        self._handlers.setdefault(method, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(method, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        result = await self.request("initialize", params)
        if isinstance(result, dict):
            self.server_capabilities = result.get("capabilities") or {}
        self.notify("initialized", {})
        return result

    async def request(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any:
        if not self._connected:
            raise SessionClosedError("Client is not connected")
        loop = asyncio.get_running_loop()
        limit = self.timeout if timeout is None else timeout
        request_id = next(self._ids)
        future: asyncio.Future[Any] = loop.create_future()
        self._pending[request_id] = PendingRequest(request_id, method, future, loop.time() + limit)
        try:
            self.transport.send(make_request(request_id, method, params))
            return await asyncio.wait_for(future, timeout=limit)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(f"{method} timed out after {limit:.1f}s") from None
        finally:
            self._pending.pop(request_id, None)

    def notify(self, method: str, params: Any = None) -> None:
        if not self._connected:
            raise SessionClosedError("Client is not connected")
        self.transport.send(make_notification(method, params))

    def _receive(self, message: Message) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            LOGGER.debug("Dropping message received without a running loop: %r", message)
            return
        loop.call_soon_threadsafe(self._dispatch, message)

    def _dispatch(self, message: Message) -> None:
        if "method" in message:
            if "id" in message:
                self._answer_server_request(message)
            else:
                self._notify_handlers(message["method"], message.get("params"))
            return
        pending = self._pending.get(message.get("id"))  # type: ignore[arg-type]
        if pending is None or pending.future.done():
            LOGGER.debug("Response for unknown or settled request %r", message.get("id"))
            return
        error = message.get("error")
        if error is not None:
            pending.future.set_exception(
                ResponseError(int(error.get("code", ErrorCode.INTERNAL_ERROR)), str(error.get("message", "")), error.get("data"))
            )
        else:
            pending.future.set_result(message.get("result"))

    def _notify_handlers(self, method: str, params: Any) -> None:
        for handler in list(self._handlers.get(method, [])):
            try:
                handler(params)
            except Exception:  # noqa: BLE001 - notification consumers must not break dispatch
                LOGGER.exception("Error in %s handler", method)

    def _answer_server_request(self, message: Message) -> None:
        method = message["method"]
        request_id = message["id"]
        if method == "workspace/configuration":
            items = (message.get("params") or {}).get("items") or []
            reply = make_response(request_id, [None] * len(items))
        elif method in _ACKNOWLEDGED_REQUESTS:
            reply = make_response(request_id, None)
        else:
            reply = make_error(request_id, ErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}")
        try:
            self.transport.send(reply)
        except TransportClosedError:
            LOGGER.debug("Transport closed before answering %s", method)


__all__ = ["LspClient", "NotificationHandler", "PendingRequest"]
