"""Run mypy over the virtual tree and parse its output into engine diagnostics."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

from mypy import api as mypy_api

from ..errors import EngineError
from ..logging import get_logger
from ..paths import ensure_cache_dir
from .base import EngineDiagnostic, EnginePosition, EngineRange, Severity
from .tree import VirtualTree

LOGGER = get_logger(__name__)

_MYPY_PATTERN = re.compile(
    r"^(?P<path>.+?):(?P<line>\d+)(?::(?P<column>\d+))?(?::(?P<end_line>\d+):(?P<end_column>\d+))?: "
    r"(?P<severity>error|warning|note): (?P<message>.*?)(?:  \[(?P<code>[\w\-\.]+)\])?$"
)

_SEVERITIES = {"error": Severity.ERROR, "warning": Severity.WARNING, "note": Severity.INFO}


@dataclass(slots=True)
class EngineSettings:
    python_version: str = "3.12"
    strict: bool = False
    mypy_path: list[str] = field(default_factory=list)
    typeshed_path: str | None = None
    cache_dir: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineSettings":
        return cls(
            python_version=str(data.get("python_version", "3.12")),
            strict=bool(data.get("strict", False)),
            mypy_path=[str(item) for item in data.get("mypy_path", [])],
            typeshed_path=data.get("typeshed_path"),
            cache_dir=data.get("cache_dir"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_mypy_output(stdout: str, tree: VirtualTree) -> dict[str, list[EngineDiagnostic]]:
    """Group mypy output lines by the virtual path they refer to."""
    grouped: dict[str, list[EngineDiagnostic]] = {}
    for raw_line in stdout.splitlines():
        line = raw_line.rstrip()
        if not line or line.startswith("Success:"):
            continue
        match = _MYPY_PATTERN.match(line)
        if not match:
            LOGGER.debug("Unparsed mypy output: %s", line)
            continue
        data = match.groupdict()
        virtual = tree.virtual_path(data["path"])
        if virtual is None:
            continue
        grouped.setdefault(virtual, []).append(
            EngineDiagnostic(
                message=data["message"],
                severity=_SEVERITIES[data["severity"]],
                range=_range_from_match(data),
                code=data.get("code"),
            )
        )
    return grouped


def _range_from_match(data: dict[str, str | None]) -> EngineRange | None:
    if data.get("column") is None:
        return None
    start = EnginePosition(int(data["line"] or 1), int(data["column"] or 1))
    if data.get("end_line") is not None and data.get("end_column") is not None:
        # mypy prints the last column inclusively; engine ranges are end-exclusive.
        end = EnginePosition(int(data["end_line"] or 1), int(data["end_column"] or 0) + 1)
    else:
        end = EnginePosition(start.line, start.column + 1)
    return EngineRange(start=start, end=end)


class MypyRunner:
    """Check a set of open documents with mypy's in-process API."""

    def __init__(self, tree: VirtualTree, settings: EngineSettings, *, cache_key: str = "local") -> None:
        self.tree = tree
        self.settings = settings
        self._cache_key = cache_key

    def _config_file(self) -> Path:
        lines = ["[mypy]"]
        stub_dirs = [str(self.tree.real_path(path)) for path in self.settings.mypy_path if path]
        if stub_dirs:
            lines.append(f"mypy_path = {', '.join(stub_dirs)}")
        config = self.tree.root / "mypy.ini"
        config.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return config

    def _cache_dir(self) -> Path:
        base = Path(self.settings.cache_dir) if self.settings.cache_dir else self.tree.root / ".cache"
        return ensure_cache_dir(base, "mypy", f"{self.settings.python_version}-{self._cache_key}")

    def _arguments(self, targets: list[Path]) -> list[str]:
        args = [str(target) for target in targets]
        args += [
            "--config-file",
            str(self._config_file()),
            "--cache-dir",
            str(self._cache_dir()),
            "--python-version",
            self.settings.python_version,
            "--show-column-numbers",
            "--show-error-end",
            "--show-absolute-path",
            "--no-error-summary",
            "--no-color-output",
            "--no-pretty",
        ]
        if self.settings.strict:
            args.append("--strict")
        typeshed = self.settings.typeshed_path
        if typeshed and self.tree.exists(f"{typeshed.rstrip('/')}/stdlib/VERSIONS"):
            args += ["--custom-typeshed-dir", str(self.tree.real_path(typeshed))]
        return args

    def check(self, files: Mapping[str, str], target: str) -> list[EngineDiagnostic]:
        """Write ``files`` into the tree and return diagnostics reported for ``target``."""
        targets = [self.tree.write(path, text) for path, text in files.items()]
        if target not in files:
            raise KeyError(target)
        stdout, stderr, status = mypy_api.run(self._arguments(targets))
        if status not in (0, 1):
            raise EngineError(stderr.strip() or stdout.strip() or f"mypy exited with status {status}")
        if stderr.strip():
            LOGGER.debug("mypy stderr:\n%s", stderr.strip())
        return parse_mypy_output(stdout, self.tree).get(target, [])


__all__ = ["EngineSettings", "MypyRunner", "parse_mypy_output"]
