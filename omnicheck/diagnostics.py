"""Application-facing diagnostics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from .adapter.convert import RANGE_UNKNOWN, to_engine_severity
from .engine.base import Severity
from .lsp_client.messages import Range

SeverityLabel = Literal["error", "warning", "info"]

_LABELS: dict[Severity, SeverityLabel] = {
    Severity.ERROR: "error",
    Severity.WARNING: "warning",
    Severity.INFO: "info",
}


def _label(severity: Any) -> SeverityLabel:
    try:
        return _LABELS[to_engine_severity(severity)]
    except (TypeError, ValueError):
        # Hints and anything unrecognised read as info.
        return "info"


@dataclass(slots=True)
class Diagnostic:
    message: str
    severity: SeverityLabel
    source: str
    range: Range | None = None

    @classmethod
    def from_protocol(cls, data: dict[str, Any], source: str) -> "Diagnostic":
        """Build a diagnostic from a protocol object.

        A range flagged as unknown in ``data`` comes back as ``None``.
        """
        raw_range = data.get("range")
        extra = data.get("data")
        if isinstance(extra, dict) and extra.get(RANGE_UNKNOWN):
            raw_range = None
        return cls(
            message=str(data.get("message", "")),
            severity=_label(data.get("severity")),
            source=str(data.get("source") or source),
            range=Range.from_lsp(raw_range) if raw_range else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "severity": self.severity,
            "source": self.source,
            "range": self.range.to_lsp() if self.range else None,
        }


def info(message: str, source: str) -> Diagnostic:
    return Diagnostic(message=message, severity="info", source=source)


def error(message: str, source: str) -> Diagnostic:
    return Diagnostic(message=message, severity="error", source=source)


__all__ = ["Diagnostic", "SeverityLabel", "error", "info"]
