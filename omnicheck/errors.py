"""Exception types shared by the transport, adapter and session layers."""

from __future__ import annotations


class OmniCheckError(RuntimeError):
    """Base class for omnicheck failures."""


class TransportClosedError(OmniCheckError):
    """Raised when sending through a transport that has been closed."""


class WorkerError(OmniCheckError):
    """A worker failed to start or died while running."""


class SessionClosedError(OmniCheckError):
    """A pending request was abandoned because its session was torn down."""


class RequestTimeoutError(OmniCheckError):
    """A request did not receive a response before its deadline."""


class ResponseError(OmniCheckError):
    """The remote side answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: object | None = None) -> None:
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


class EngineError(OmniCheckError):
    """The checker itself crashed or rejected its invocation."""


class InvalidParamsError(ValueError):
    """Request parameters are missing or have the wrong shape."""


class StaleHandleError(ValueError):
    """A file handle was used after its document was closed."""


__all__ = [
    "EngineError",
    "InvalidParamsError",
    "OmniCheckError",
    "RequestTimeoutError",
    "ResponseError",
    "SessionClosedError",
    "StaleHandleError",
    "TransportClosedError",
    "WorkerError",
]
