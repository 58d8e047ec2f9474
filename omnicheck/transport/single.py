"""Transport bridging one worker to the protocol contract."""

from __future__ import annotations

import pickle
from typing import Any, Callable

import orjson

from ..errors import WorkerError
from ..logging import get_logger
from ..lsp_client.messages import Message, is_protocol_message
from .base import Transport
from .worker import Worker

LOGGER = get_logger(__name__)

ErrorCallback = Callable[[Exception], None]


def decode_inbound(data: Any) -> Message | None:
    """Return the protocol message carried by ``data`` or None when it is not one."""
    if is_protocol_message(data):
        return data
    if isinstance(data, (str, bytes)):
        try:
            parsed = orjson.loads(data)
        except orjson.JSONDecodeError:
            return None
        if is_protocol_message(parsed):
            return parsed
    return None


def encode_outbound(worker: Worker, message: Message) -> None:
    """Post ``message`` by structural copy, falling back to JSON text."""
    try:
        worker.post_message(message)
    except (pickle.PicklingError, TypeError, AttributeError) as exc:
        LOGGER.debug("Message not copyable (%s); sending as JSON text", exc)
        worker.post_message(orjson.dumps(message, default=str).decode("utf-8"))


class SingleWorkerTransport(Transport):
    """Wrap exactly one worker; forward only JSON-RPC envelopes to subscribers."""

    def __init__(
        self,
        worker: Worker,
        *,
        on_error: ErrorCallback | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        super().__init__(on_close=on_close)
        self.worker = worker
        self._on_error = on_error
        worker.add_listener("message", self._handle_message)
        worker.add_listener("error", self._handle_error)

    def _handle_message(self, data: Any) -> None:
        message = decode_inbound(data)
        if message is None:
            LOGGER.debug("Dropping non-protocol message from %s: %r", self.worker.name, data)
            return
        self._deliver(message)

    def _handle_error(self, error: WorkerError) -> None:
        LOGGER.error("Worker %s error: %s", self.worker.name, error)
        if self._on_error is not None:
            self._on_error(error)

    def _post(self, message: Message) -> None:
        encode_outbound(self.worker, message)

    def _shutdown(self) -> None:
        self.worker.remove_listener("message", self._handle_message)
        self.worker.remove_listener("error", self._handle_error)
        self.worker.terminate()


__all__ = ["SingleWorkerTransport", "decode_inbound", "encode_outbound"]
