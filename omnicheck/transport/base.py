"""Transport contract shared by every worker bridge."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Callable

from ..errors import TransportClosedError
from ..logging import get_logger
from ..lsp_client.messages import Message

LOGGER = get_logger(__name__)

MessageHandler = Callable[[Message], None]


class Transport(ABC):
    """Carries protocol messages across an execution boundary.

    Handlers run once per inbound protocol message, in arrival order. After the
    first ``close()`` sends fail, handlers are dropped and ``on_close`` has fired.
    """

    def __init__(self, *, on_close: Callable[[], None] | None = None) -> None:
        self._handlers: list[MessageHandler] = []
        self._handlers_lock = threading.Lock()
        self._closed = False
        self._close_lock = threading.Lock()
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, message: Message) -> None:
        """Queue a message for delivery to the remote side."""
        if self._closed:
            raise TransportClosedError("Transport is closed")
        self._post(message)

    def subscribe(self, handler: MessageHandler) -> None:
        with self._handlers_lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

    def unsubscribe(self, handler: MessageHandler) -> None:
        with self._handlers_lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._shutdown()
        finally:
            with self._handlers_lock:
                self._handlers.clear()
            callback, self._on_close = self._on_close, None
            if callback is not None:
                callback()

    def _deliver(self, message: Message) -> None:
        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(message)
            except Exception:  # noqa: BLE001 - one broken subscriber must not starve the rest
                LOGGER.exception("Error in protocol message handler")

    @abstractmethod
    def _post(self, message: Message) -> None:
        """Hand one outbound message to the underlying worker(s)."""

    @abstractmethod
    def _shutdown(self) -> None:
        """Release workers; called exactly once by ``close()``."""


__all__ = ["MessageHandler", "Transport"]
