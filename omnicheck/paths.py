"""Path and URI helper utilities."""

from __future__ import annotations

import posixpath
from pathlib import Path
from urllib.parse import quote, unquote, urlparse

FILE_SCHEME = "file://"
ENGINE_URI_MARKER = "/file:"


def _normalize_relative(path: str) -> str:
    """Return a forward-slashed relative path without leading separators."""
    return path.replace("\\", "/").lstrip("/")


def ensure_cache_dir(base: Path, *parts: str) -> Path:
    """Return (and create) a cache directory under base path."""
    cache_dir = base.joinpath(*parts)
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def engine_path_to_uri(path: str) -> str:
    """Map a path reported by the engine back to a canonical document URI.

    ``/file:/workspace/main.py`` and ``/workspace/main.py`` both become
    ``file:///workspace/main.py``; an existing ``file://`` URI is returned as is.
    """
    if path.startswith(FILE_SCHEME):
        return path
    if path.startswith(ENGINE_URI_MARKER + "/"):
        return FILE_SCHEME + path[len(ENGINE_URI_MARKER) :]
    return FILE_SCHEME + path


def uri_to_path(uri: str) -> str:
    """Convert a ``file://`` URI to its absolute posix path."""
    if not uri.startswith(FILE_SCHEME):
        return posixpath.normpath("/" + _normalize_relative(uri))
    parsed = urlparse(uri)
    return posixpath.normpath(unquote(parsed.path) or "/")


def scratch_relative(virtual_path: str) -> Path:
    """Encode a virtual absolute path into a filesystem-safe relative path."""
    normalized = _normalize_relative(virtual_path)
    if not normalized:
        return Path("_")
    parts = [quote(segment, safe="._-") for segment in normalized.split("/") if segment]
    return Path(*parts)


__all__ = [
    "ENGINE_URI_MARKER",
    "FILE_SCHEME",
    "engine_path_to_uri",
    "ensure_cache_dir",
    "scratch_relative",
    "uri_to_path",
]
