"""The analysis engine: jedi for navigation, mypy for diagnostics, black for formatting.

All positions on this surface are 1-based. Jedi itself counts columns from
zero, so the conversion to and from jedi happens here and nowhere else.
"""

from __future__ import annotations

import itertools
import posixpath
import re
from typing import Callable, Iterable, Mapping

import black
import jedi

from ..errors import StaleHandleError
from ..logging import get_logger
from ..paths import FILE_SCHEME, uri_to_path
from .base import (
    AnalysisEngine,
    Completion,
    DocumentHighlight,
    EngineDiagnostic,
    EnginePosition,
    EngineRange,
    FileHandle,
    Hover,
    LocationLink,
    ParameterInformation,
    SignatureHelp,
    SignatureInformation,
)
from .mypy_runner import EngineSettings, MypyRunner
from .tree import VirtualTree

LOGGER = get_logger(__name__)

Checker = Callable[[Mapping[str, str], str], list[EngineDiagnostic]]

# LSP CompletionItemKind values keyed by jedi name type.
_COMPLETION_KINDS = {
    "module": 9,
    "class": 7,
    "instance": 6,
    "function": 3,
    "param": 6,
    "path": 17,
    "keyword": 14,
    "property": 10,
    "statement": 6,
}

_HIGHLIGHT_READ = 2
_HIGHLIGHT_WRITE = 3

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class Workspace(AnalysisEngine):
    """In-memory workspace rooted at a virtual directory."""

    def __init__(
        self,
        root: str = "/",
        settings: EngineSettings | None = None,
        *,
        tree: VirtualTree | None = None,
        checker: Checker | None = None,
        resolve_uris: bool = False,
    ) -> None:
        self.root = root
        self.settings = settings or EngineSettings()
        self.tree = tree or VirtualTree()
        self._runner = MypyRunner(self.tree, self.settings)
        self._checker = checker
        self._resolve_uris = resolve_uris
        self._ids = itertools.count(1)
        self._files: dict[int, tuple[FileHandle, str]] = {}
        self._project = jedi.Project(path=str(self.tree.root), added_sys_path=self._stub_dirs())

    @classmethod
    def from_snapshot(
        cls,
        files: Mapping[str, str],
        settings: EngineSettings,
        *,
        root: str = "/",
        checker: Checker | None = None,
    ) -> "Workspace":
        """Build a workspace whose tree is pre-populated from a virtual filesystem snapshot."""
        tree = VirtualTree()
        for path, text in files.items():
            tree.write(path, text)
        return cls(root, settings, tree=tree, checker=checker, resolve_uris=True)

    def _stub_dirs(self) -> list[str]:
        return [str(self.tree.real_path(path)) for path in self.settings.mypy_path if path]

    # --- file lifecycle ----------------------------------------------------------

    def _virtual_path(self, name: str) -> str:
        if self._resolve_uris and name.startswith(FILE_SCHEME):
            return uri_to_path(name)
        return posixpath.normpath(posixpath.join(self.root, name))

    def _entry(self, handle: FileHandle) -> str:
        entry = self._files.get(handle.id)
        if entry is None:
            raise StaleHandleError(f"File handle {handle.id} ({handle.path}) is not open")
        return entry[1]

    def open_file(self, path: str, text: str) -> FileHandle:
        handle = FileHandle(id=next(self._ids), path=self._virtual_path(path))
        self._files[handle.id] = (handle, text)
        self.tree.write(handle.path, text)
        return handle

    def update_file(self, handle: FileHandle, text: str) -> None:
        self._entry(handle)
        self._files[handle.id] = (handle, text)
        self.tree.write(handle.path, text)

    def close_file(self, handle: FileHandle) -> None:
        self._entry(handle)
        del self._files[handle.id]
        if not any(other.path == handle.path for other, _ in self._files.values()):
            self.tree.remove(handle.path)

    def source_text(self, handle: FileHandle) -> str:
        return self._entry(handle)

    def open_documents(self) -> dict[str, str]:
        return {handle.path: text for handle, text in self._files.values()}

    def close(self) -> None:
        self._files.clear()
        self.tree.cleanup()

    # --- analysis ----------------------------------------------------------------

    def check_file(self, handle: FileHandle) -> list[EngineDiagnostic]:
        self._entry(handle)
        documents = self.open_documents()
        if self._checker is not None:
            return self._checker(documents, handle.path)
        return self._runner.check(documents, handle.path)

    def check_locally(self, documents: Mapping[str, str], target: str) -> list[EngineDiagnostic]:
        return self._runner.check(documents, target)

    def _script(self, handle: FileHandle) -> jedi.Script:
        text = self._entry(handle)
        return jedi.Script(text, path=self.tree.real_path(handle.path), project=self._project)

    def hover(self, handle: FileHandle, position: EnginePosition) -> Hover | None:
        script = self._script(handle)
        names = script.infer(position.line, position.column - 1) or script.help(position.line, position.column - 1)
        if not names:
            return None
        name = names[0]
        signature = name.description or name.name
        docstring = name.docstring(raw=True)
        markdown = f"```python\n{signature}\n```"
        if docstring:
            markdown += f"\n\n{docstring}"
        word = _word_range(self._entry(handle), position)
        return Hover(markdown=markdown, range=word or EngineRange(position, position))

    def completions(self, handle: FileHandle, position: EnginePosition) -> list[Completion]:
        script = self._script(handle)
        items: list[Completion] = []
        for completion in script.complete(position.line, position.column - 1):
            items.append(
                Completion(
                    name=completion.name,
                    kind=_COMPLETION_KINDS.get(completion.type),
                    detail=completion.description or None,
                    insert_text=completion.name,
                )
            )
        return items

    def goto_definition(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]:
        script = self._script(handle)
        return self._links(script.goto(position.line, position.column - 1, follow_imports=True))

    def goto_declaration(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]:
        script = self._script(handle)
        return self._links(script.goto(position.line, position.column - 1, follow_imports=False))

    def goto_type_definition(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]:
        script = self._script(handle)
        return self._links(script.infer(position.line, position.column - 1))

    def goto_references(self, handle: FileHandle, position: EnginePosition) -> list[LocationLink]:
        script = self._script(handle)
        return self._links(script.get_references(position.line, position.column - 1))

    def document_highlights(self, handle: FileHandle, position: EnginePosition) -> list[DocumentHighlight]:
        script = self._script(handle)
        highlights: list[DocumentHighlight] = []
        for name in script.get_references(position.line, position.column - 1, scope="file"):
            name_range = _name_range(name)
            if name_range is None:
                continue
            kind = _HIGHLIGHT_WRITE if name.is_definition() else _HIGHLIGHT_READ
            highlights.append(DocumentHighlight(range=name_range, kind=kind))
        return highlights

    def signature_help(self, handle: FileHandle, position: EnginePosition) -> SignatureHelp | None:
        script = self._script(handle)
        signatures = script.get_signatures(position.line, position.column - 1)
        if not signatures:
            return None
        return SignatureHelp(
            signatures=[
                SignatureInformation(
                    label=signature.to_string(),
                    documentation=signature.docstring(raw=True) or None,
                    parameters=[ParameterInformation(label=param.to_string()) for param in signature.params],
                    active_parameter=signature.index,
                )
                for signature in signatures
            ],
            active_signature=0,
        )

    def format(self, handle: FileHandle) -> str | None:
        text = self._entry(handle)
        try:
            formatted = black.format_str(text, mode=black.Mode())
        except black.InvalidInput as exc:
            LOGGER.debug("Cannot format %s: %s", handle.path, exc)
            return None
        return formatted if formatted != text else None

    def _links(self, names: Iterable[jedi.api.classes.Name]) -> list[LocationLink]:
        links: list[LocationLink] = []
        for name in names:
            name_range = _name_range(name)
            if name_range is None or name.module_path is None:
                continue
            path = self.tree.virtual_path(name.module_path) or str(name.module_path)
            links.append(LocationLink(path=path, full_range=name_range))
        return links


def _name_range(name: jedi.api.classes.Name) -> EngineRange | None:
    if name.line is None or name.column is None:
        return None
    start = EnginePosition(name.line, name.column + 1)
    return EngineRange(start=start, end=EnginePosition(name.line, start.column + len(name.name)))


def _word_range(text: str, position: EnginePosition) -> EngineRange | None:
    lines = text.splitlines()
    if not 1 <= position.line <= len(lines):
        return None
    line = lines[position.line - 1]
    offset = position.column - 1
    for match in _IDENTIFIER.finditer(line):
        if match.start() <= offset <= match.end():
            return EngineRange(
                start=EnginePosition(position.line, match.start() + 1),
                end=EnginePosition(position.line, match.end() + 1),
            )
    return None


__all__ = ["Checker", "Workspace"]
