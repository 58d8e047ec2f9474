"""Typed messages and JSON-RPC envelopes for LSP communication."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

JSONRPC_VERSION = "2.0"

Message = dict[str, Any]


class ErrorCode(IntEnum):
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


@dataclass(slots=True)
class Position:
    """Zero-based line/character position as used on the wire."""

    line: int
    character: int

    @classmethod
    def from_lsp(cls, data: dict[str, Any]) -> "Position":
        return cls(line=int(data["line"]), character=int(data["character"]))

    def to_lsp(self) -> dict[str, int]:
        return {"line": self.line, "character": self.character}


@dataclass(slots=True)
class Range:
    start: Position
    end: Position

    @classmethod
    def from_lsp(cls, data: dict[str, Any]) -> "Range":
        return cls(start=Position.from_lsp(data["start"]), end=Position.from_lsp(data["end"]))

    def to_lsp(self) -> dict[str, dict[str, int]]:
        return {"start": self.start.to_lsp(), "end": self.end.to_lsp()}


def is_protocol_message(data: object) -> bool:
    """Return True for structured objects carrying the JSON-RPC version marker."""
    return isinstance(data, dict) and data.get("jsonrpc") == JSONRPC_VERSION


def make_request(request_id: int | str, method: str, params: Any = None) -> Message:
    message: Message = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def make_notification(method: str, params: Any = None) -> Message:
    message: Message = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


def make_response(request_id: int | str | None, result: Any) -> Message:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error(
    request_id: int | str | None,
    code: int,
    message: str,
    data: Any = None,
) -> Message:
    error: dict[str, Any] = {"code": int(code), "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


__all__ = [
    "ErrorCode",
    "JSONRPC_VERSION",
    "Message",
    "Position",
    "Range",
    "is_protocol_message",
    "make_error",
    "make_notification",
    "make_request",
    "make_response",
]
