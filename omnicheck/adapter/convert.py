"""Translation between protocol-standard and engine-native values.

Protocol positions are 0-based ``{"line", "character"}`` dicts; engine
positions are 1-based ``EnginePosition(line, column)``.
"""

from __future__ import annotations

from typing import Any

from ..engine.base import EnginePosition, EngineRange, LocationLink, Severity
from ..errors import InvalidParamsError
from ..paths import engine_path_to_uri

ENGINE_TO_PROTOCOL_SEVERITY: dict[Severity, int] = {
    Severity.ERROR: 1,
    Severity.WARNING: 2,
    Severity.INFO: 3,
}
PROTOCOL_TO_ENGINE_SEVERITY: dict[int, Severity] = {value: key for key, value in ENGINE_TO_PROTOCOL_SEVERITY.items()}

ZERO_RANGE: dict[str, dict[str, int]] = {
    "start": {"line": 0, "character": 0},
    "end": {"line": 0, "character": 0},
}
# Set in a diagnostic's ``data`` when its ZERO_RANGE stands in for an unknown location.
RANGE_UNKNOWN = "rangeUnknown"


def to_engine_position(position: Any) -> EnginePosition:
    try:
        line = int(position["line"])
        character = int(position["character"])
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidParamsError(f"Invalid position: {position!r}") from exc
    if line < 0 or character < 0:
        raise InvalidParamsError(f"Negative position: {position!r}")
    return EnginePosition(line=line + 1, column=character + 1)


def to_protocol_position(position: EnginePosition) -> dict[str, int]:
    return {"line": position.line - 1, "character": position.column - 1}


def to_engine_range(range_: Any) -> EngineRange:
    try:
        return EngineRange(start=to_engine_position(range_["start"]), end=to_engine_position(range_["end"]))
    except (KeyError, TypeError) as exc:
        raise InvalidParamsError(f"Invalid range: {range_!r}") from exc


def to_protocol_range(range_: EngineRange) -> dict[str, dict[str, int]]:
    return {"start": to_protocol_position(range_.start), "end": to_protocol_position(range_.end)}


def to_protocol_severity(severity: Severity) -> int:
    return ENGINE_TO_PROTOCOL_SEVERITY[severity]


def to_engine_severity(severity: int) -> Severity:
    try:
        return PROTOCOL_TO_ENGINE_SEVERITY[severity]
    except KeyError:
        raise ValueError(f"Unknown protocol severity: {severity!r}") from None


def to_protocol_location(link: LocationLink) -> dict[str, Any]:
    return {"uri": engine_path_to_uri(link.path), "range": to_protocol_range(link.full_range)}


__all__ = [
    "ENGINE_TO_PROTOCOL_SEVERITY",
    "PROTOCOL_TO_ENGINE_SEVERITY",
    "RANGE_UNKNOWN",
    "ZERO_RANGE",
    "to_engine_position",
    "to_engine_range",
    "to_engine_severity",
    "to_protocol_location",
    "to_protocol_position",
    "to_protocol_range",
    "to_protocol_severity",
]
