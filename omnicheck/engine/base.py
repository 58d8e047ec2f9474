"""Engine-native types and the interface every analysis engine implements.

Positions here are 1-based in both line and column; ranges are end-exclusive.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum


class Severity(IntEnum):
    INFO = 0
    WARNING = 1
    ERROR = 2

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True, slots=True)
class EnginePosition:
    line: int
    column: int


@dataclass(frozen=True, slots=True)
class EngineRange:
    start: EnginePosition
    end: EnginePosition


@dataclass(frozen=True, slots=True)
class FileHandle:
    """Opaque reference to an open file; valid until the file is closed."""

    id: int
    path: str


@dataclass(slots=True)
class EngineDiagnostic:
    message: str
    severity: Severity
    range: EngineRange | None = None
    code: str | None = None


@dataclass(slots=True)
class Hover:
    markdown: str
    range: EngineRange


@dataclass(slots=True)
class TextEdit:
    range: EngineRange
    new_text: str


@dataclass(slots=True)
class Completion:
    name: str
    kind: int | None = None
    detail: str | None = None
    documentation: str | None = None
    insert_text: str | None = None
    additional_text_edits: list[TextEdit] = field(default_factory=list)


@dataclass(slots=True)
class LocationLink:
    path: str
    full_range: EngineRange


@dataclass(slots=True)
class DocumentHighlight:
    range: EngineRange
    kind: int


@dataclass(slots=True)
class ParameterInformation:
    label: str
    documentation: str | None = None


@dataclass(slots=True)
class SignatureInformation:
    label: str
    parameters: list[ParameterInformation]
    documentation: str | None = None
    active_parameter: int | None = None


@dataclass(slots=True)
class SignatureHelp:
    signatures: list[SignatureInformation]
    active_signature: int = 0


class AnalysisEngine(ABC):
    """Interface for a static-analysis engine addressed by file handles."""

    @abstractmethod
    def open_file(self, path: str, text: str) -> FileHandle:
        """Open a document and return its handle."""

    @abstractmethod
    def update_file(self, handle: FileHandle, text: str) -> None:
        """Replace the whole content of an open document."""

    @abstractmethod
    def close_file(self, handle: FileHandle) -> None:
        """Close a document; its handle becomes invalid."""

    @abstractmethod
    def source_text(self, handle: FileHandle) -> str:
        """Return the current text of an open document."""

    @abstractmethod
    def check_file(self, handle: FileHandle) -> list[EngineDiagnostic]:
        """Return every diagnostic for the document's current text."""

    @abstractmethod
    def hover(self, handle: FileHandle, position: EnginePosition) -> Hover | None: ...

    @abstractmethod
    def completions(self, handle: FileHandle, position: EnginePosition) -> list[Completion]: ...

    @abstractmethod
    def goto_definition(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]: ...

    @abstractmethod
    def goto_type_definition(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]: ...

    @abstractmethod
    def goto_declaration(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]: ...

    @abstractmethod
    def goto_references(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]: ...

    @abstractmethod
    def document_highlights(self, handle: FileHandle, position: EnginePosition) -> list[DocumentHighlight]: ...

    @abstractmethod
    def signature_help(self, handle: FileHandle, position: EnginePosition) -> SignatureHelp | None: ...

    @abstractmethod
    def format(self, handle: FileHandle) -> str | None:
        """Return the formatted text, or None when formatting yields nothing."""


__all__ = [
    "AnalysisEngine",
    "Completion",
    "DocumentHighlight",
    "EngineDiagnostic",
    "EnginePosition",
    "EngineRange",
    "FileHandle",
    "Hover",
    "LocationLink",
    "ParameterInformation",
    "Severity",
    "SignatureHelp",
    "SignatureInformation",
    "TextEdit",
]
