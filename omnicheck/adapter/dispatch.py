"""Dispatch JSON-RPC methods onto an analysis engine.

The adapter lives inside a worker and owns the engine plus the mapping from
document URIs to engine file handles. Every inbound position is converted to
the engine's 1-based convention before the engine sees it, and every outbound
position is converted back.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Mapping

from ..engine.base import AnalysisEngine, EngineDiagnostic, FileHandle
from ..errors import InvalidParamsError
from ..logging import get_logger
from ..lsp_client.messages import (
    ErrorCode,
    Message,
    make_error,
    make_notification,
    make_response,
)
from .convert import (
    RANGE_UNKNOWN,
    ZERO_RANGE,
    to_engine_position,
    to_protocol_location,
    to_protocol_range,
    to_protocol_severity,
)

LOGGER = get_logger(__name__)

Emit = Callable[[Message], None]
EngineFactory = Callable[[Mapping[str, Any]], AnalysisEngine]
Handler = Callable[["EngineAdapter", dict[str, Any]], Any]


class Method(str, Enum):
    INITIALIZE = "initialize"
    INITIALIZED = "initialized"
    DID_OPEN = "textDocument/didOpen"
    DID_CHANGE = "textDocument/didChange"
    DID_CLOSE = "textDocument/didClose"
    DIAGNOSTIC = "textDocument/diagnostic"
    HOVER = "textDocument/hover"
    COMPLETION = "textDocument/completion"
    DEFINITION = "textDocument/definition"
    TYPE_DEFINITION = "textDocument/typeDefinition"
    DECLARATION = "textDocument/declaration"
    REFERENCES = "textDocument/references"
    DOCUMENT_HIGHLIGHT = "textDocument/documentHighlight"
    SIGNATURE_HELP = "textDocument/signatureHelp"
    FORMATTING = "textDocument/formatting"
    SHUTDOWN = "shutdown"
    EXIT = "exit"


CAPABILITIES: dict[str, Any] = {
    "textDocumentSync": {"openClose": True, "change": 1},
    "hoverProvider": True,
    "completionProvider": {"triggerCharacters": [".", "("]},
    "definitionProvider": True,
    "referencesProvider": True,
    "typeDefinitionProvider": True,
    "declarationProvider": True,
    "documentHighlightProvider": True,
    "signatureHelpProvider": {"triggerCharacters": ["(", ","]},
    "documentFormattingProvider": True,
    "diagnosticProvider": {"interFileDependencies": True, "workspaceDiagnostics": False},
}

_HANDLERS: dict[Method, Handler] = {}


def handles(method: Method) -> Callable[[Handler], Handler]:
    def register(func: Handler) -> Handler:
        _HANDLERS[method] = func
        return func

    return register


def _markdown(value: str | None) -> dict[str, str] | None:
    return {"kind": "markdown", "value": value} if value else None


def _document_uri(params: Mapping[str, Any]) -> str:
    try:
        uri = params["textDocument"]["uri"]
    except (KeyError, TypeError) as exc:
        raise InvalidParamsError("Missing textDocument.uri") from exc
    if not isinstance(uri, str):
        raise InvalidParamsError("textDocument.uri must be a string")
    return uri


class EngineAdapter:
    """Protocol front for one engine instance."""

    def __init__(
        self,
        engine_factory: EngineFactory,
        emit: Emit,
        *,
        source: str,
        push_diagnostics: bool = False,
    ) -> None:
        self._engine_factory = engine_factory
        self._emit = emit
        self.source = source
        self.push_diagnostics = push_diagnostics
        self.engine: AnalysisEngine | None = None
        self.handles: dict[str, FileHandle] = {}
        self.running = True

    def handle(self, message: Message) -> None:
        """Process one inbound message, emitting a response for requests."""
        request_id = message.get("id")
        is_request = "id" in message
        method_name = message.get("method")
        if not isinstance(method_name, str):
            if is_request:
                self._emit(make_error(request_id, ErrorCode.INVALID_REQUEST, "Invalid request: missing method"))
            return
        try:
            method = Method(method_name)
        except ValueError:
            if is_request:
                self._emit(make_error(request_id, ErrorCode.METHOD_NOT_FOUND, f"Method not found: {method_name}"))
            else:
                LOGGER.debug("Ignoring unsupported notification %s", method_name)
            return
        params = message.get("params") or {}
        try:
            if not isinstance(params, dict):
                raise InvalidParamsError("params must be an object")
            result = _HANDLERS[method](self, params)
        except InvalidParamsError as exc:
            LOGGER.warning("Invalid params for %s: %s", method_name, exc)
            if is_request:
                self._emit(make_error(request_id, ErrorCode.INVALID_PARAMS, f"Invalid params: {exc}"))
            return
        except Exception as exc:  # noqa: BLE001 - engine failures become error responses
            LOGGER.exception("Error handling %s", method_name)
            if is_request:
                self._emit(make_error(request_id, ErrorCode.INTERNAL_ERROR, f"Internal error: {exc}"))
            return
        if is_request:
            self._emit(make_response(request_id, result))

    # --- helpers -----------------------------------------------------------------

    def _lookup(self, params: Mapping[str, Any]) -> tuple[AnalysisEngine, FileHandle] | None:
        uri = _document_uri(params)
        handle = self.handles.get(uri)
        if self.engine is None or handle is None:
            return None
        return self.engine, handle

    def _protocol_diagnostics(self, diagnostics: list[EngineDiagnostic]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        for diagnostic in diagnostics:
            item: dict[str, Any] = {
                "range": to_protocol_range(diagnostic.range) if diagnostic.range else dict(ZERO_RANGE),
                "severity": to_protocol_severity(diagnostic.severity),
                "message": diagnostic.message,
                "source": self.source,
            }
            if diagnostic.code:
                item["code"] = diagnostic.code
            if diagnostic.range is None:
                item["data"] = {RANGE_UNKNOWN: True}
            items.append(item)
        return items

    def _publish(self, uri: str, version: int | None) -> None:
        if not self.push_diagnostics or self.engine is None:
            return
        handle = self.handles.get(uri)
        diagnostics = self.engine.check_file(handle) if handle is not None else []
        params: dict[str, Any] = {"uri": uri, "diagnostics": self._protocol_diagnostics(diagnostics)}
        if version is not None:
            params["version"] = version
        self._emit(make_notification("textDocument/publishDiagnostics", params))

    def _locations(self, params: Mapping[str, Any], resolve: str) -> list[dict[str, Any]]:
        found = self._lookup(params)
        if found is None:
            return []
        engine, handle = found
        links = getattr(engine, resolve)(handle, to_engine_position(params.get("position")))
        return [to_protocol_location(link) for link in links]

    # --- lifecycle ---------------------------------------------------------------

    @handles(Method.INITIALIZE)
    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        options = params.get("initializationOptions") or {}
        if not isinstance(options, dict):
            raise InvalidParamsError("initializationOptions must be an object")
        self.handles.clear()
        self.engine = self._engine_factory(options)
        return {"capabilities": CAPABILITIES, "serverInfo": {"name": self.source}}

    @handles(Method.INITIALIZED)
    def _initialized(self, params: dict[str, Any]) -> None:
        self._emit(
            make_notification(
                "window/logMessage",
                {"type": 3, "message": f"{self.source} language server initialized"},
            )
        )

    @handles(Method.SHUTDOWN)
    def _shutdown(self, params: dict[str, Any]) -> None:
        return None

    @handles(Method.EXIT)
    def _exit(self, params: dict[str, Any]) -> None:
        self.running = False

    # --- documents ---------------------------------------------------------------

    @handles(Method.DID_OPEN)
    def _did_open(self, params: dict[str, Any]) -> None:
        uri = _document_uri(params)
        text = params["textDocument"].get("text")
        if not isinstance(text, str):
            raise InvalidParamsError("textDocument.text must be a string")
        if self.engine is None:
            return
        previous = self.handles.pop(uri, None)
        if previous is not None:
            self.engine.close_file(previous)
        self.handles[uri] = self.engine.open_file(uri, text)
        self._publish(uri, params["textDocument"].get("version"))

    @handles(Method.DID_CHANGE)
    def _did_change(self, params: dict[str, Any]) -> None:
        changes = params.get("contentChanges")
        if not isinstance(changes, list):
            raise InvalidParamsError("contentChanges must be a list")
        found = self._lookup(params)
        if found is None or not changes:
            return
        change = changes[-1]
        if not isinstance(change, dict) or not isinstance(change.get("text"), str):
            raise InvalidParamsError("content change must carry text")
        if "range" in change:
            raise InvalidParamsError("incremental document changes are not supported")
        engine, handle = found
        engine.update_file(handle, change["text"])
        self._publish(_document_uri(params), params["textDocument"].get("version"))

    @handles(Method.DID_CLOSE)
    def _did_close(self, params: dict[str, Any]) -> None:
        found = self._lookup(params)
        if found is None:
            return
        engine, handle = found
        uri = _document_uri(params)
        engine.close_file(handle)
        del self.handles[uri]
        self._publish(uri, None)

    # --- queries -----------------------------------------------------------------

    @handles(Method.DIAGNOSTIC)
    def _diagnostic(self, params: dict[str, Any]) -> dict[str, Any]:
        found = self._lookup(params)
        if found is None:
            return {"kind": "full", "items": []}
        engine, handle = found
        return {"kind": "full", "items": self._protocol_diagnostics(engine.check_file(handle))}

    @handles(Method.HOVER)
    def _hover(self, params: dict[str, Any]) -> dict[str, Any] | None:
        found = self._lookup(params)
        if found is None:
            return None
        engine, handle = found
        hover = engine.hover(handle, to_engine_position(params.get("position")))
        if hover is None:
            return None
        return {"contents": {"kind": "markdown", "value": hover.markdown}, "range": to_protocol_range(hover.range)}

    @handles(Method.COMPLETION)
    def _completion(self, params: dict[str, Any]) -> dict[str, Any]:
        found = self._lookup(params)
        if found is None:
            return {"items": []}
        engine, handle = found
        items = []
        for completion in engine.completions(handle, to_engine_position(params.get("position"))):
            item: dict[str, Any] = {
                "label": completion.name,
                "kind": completion.kind or 1,
                "insertText": completion.insert_text or completion.name,
            }
            if completion.detail:
                item["detail"] = completion.detail
            documentation = _markdown(completion.documentation)
            if documentation:
                item["documentation"] = documentation
            if completion.additional_text_edits:
                item["additionalTextEdits"] = [
                    {"range": to_protocol_range(edit.range), "newText": edit.new_text}
                    for edit in completion.additional_text_edits
                ]
            items.append(item)
        return {"items": items}

    @handles(Method.DEFINITION)
    def _definition(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return self._locations(params, "goto_definition")

    @handles(Method.TYPE_DEFINITION)
    def _type_definition(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return self._locations(params, "goto_type_definition")

    @handles(Method.DECLARATION)
    def _declaration(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return self._locations(params, "goto_declaration")

    @handles(Method.REFERENCES)
    def _references(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        return self._locations(params, "goto_references")

    @handles(Method.DOCUMENT_HIGHLIGHT)
    def _document_highlight(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        found = self._lookup(params)
        if found is None:
            return []
        engine, handle = found
        highlights = engine.document_highlights(handle, to_engine_position(params.get("position")))
        return [{"range": to_protocol_range(item.range), "kind": item.kind} for item in highlights]

    @handles(Method.SIGNATURE_HELP)
    def _signature_help(self, params: dict[str, Any]) -> dict[str, Any] | None:
        found = self._lookup(params)
        if found is None:
            return None
        engine, handle = found
        help_ = engine.signature_help(handle, to_engine_position(params.get("position")))
        if help_ is None:
            return None
        signatures = []
        for signature in help_.signatures:
            entry: dict[str, Any] = {
                "label": signature.label,
                "parameters": [
                    {"label": param.label, **({"documentation": _markdown(param.documentation)} if param.documentation else {})}
                    for param in signature.parameters
                ],
                "activeParameter": signature.active_parameter,
            }
            if signature.documentation:
                entry["documentation"] = _markdown(signature.documentation)
            signatures.append(entry)
        return {"signatures": signatures, "activeSignature": help_.active_signature}

    @handles(Method.FORMATTING)
    def _formatting(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        found = self._lookup(params)
        if found is None:
            return []
        engine, handle = found
        formatted = engine.format(handle)
        if not formatted:
            return []
        lines = engine.source_text(handle).split("\n")
        return [
            {
                "range": {
                    "start": {"line": 0, "character": 0},
                    "end": {"line": len(lines) - 1, "character": len(lines[-1])},
                },
                "newText": formatted,
            }
        ]


_missing = set(Method) - set(_HANDLERS)
if _missing:  # pragma: no cover - guards the table at import time
    raise RuntimeError(f"Methods without handlers: {sorted(method.value for method in _missing)}")


__all__ = ["CAPABILITIES", "EngineAdapter", "EngineFactory", "Method"]
