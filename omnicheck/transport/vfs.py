"""Virtual filesystem snapshot handed to the multi-worker engine on initialize."""

from __future__ import annotations

from pathlib import Path

import orjson

from ..logging import get_logger

LOGGER = get_logger(__name__)

WORKSPACE_ROOT = "/workspace"
WORKSPACE_URI = "file:///workspace"
DOCUMENT_PATH = f"{WORKSPACE_ROOT}/main.py"
CONFIG_PATH = f"{WORKSPACE_ROOT}/omnicheck.json"
TYPESHED_PATH = f"{WORKSPACE_ROOT}/typeshed"

DEFAULT_STUB_BUNDLE = Path(__file__).resolve().parents[1] / "resources" / "typeshed.json"


def load_stub_bundle(path: Path | None = None) -> dict[str, str]:
    """Load bundled stdlib stubs keyed by ``/typeshed/...`` paths.

    The bundle is produced at build time; a missing bundle yields no stubs.
    """
    bundle = path or DEFAULT_STUB_BUNDLE
    if not bundle.exists():
        LOGGER.debug("No stub bundle at %s; continuing without bundled stubs", bundle)
        return {}
    data = orjson.loads(bundle.read_bytes())
    if not isinstance(data, dict):
        raise ValueError(f"Stub bundle {bundle} must contain a JSON object")
    return {str(key): str(value) for key, value in data.items()}


def build_snapshot(
    *,
    python_version: str,
    strict: bool,
    satellites: int,
    stubs: dict[str, str],
    cache_dir: str | None = None,
    satellite_timeout_ms: int | None = None,
) -> dict[str, str]:
    """Return the path -> text mapping presented to the engine instead of a disk."""
    files: dict[str, str] = {DOCUMENT_PATH: ""}
    for path, content in stubs.items():
        files[f"{WORKSPACE_ROOT}/{path.lstrip('/')}"] = content
    files[f"{WORKSPACE_ROOT}/.root"] = ""
    config = {
        "pythonVersion": python_version,
        "strict": strict,
        "typeshedPath": TYPESHED_PATH,
        "stubPath": "",
        "satellites": satellites,
    }
    if cache_dir:
        config["cacheDir"] = cache_dir
    if satellite_timeout_ms is not None:
        config["satelliteTimeoutMs"] = satellite_timeout_ms
    files[CONFIG_PATH] = orjson.dumps(config).decode("utf-8")
    return files


__all__ = [
    "CONFIG_PATH",
    "DOCUMENT_PATH",
    "TYPESHED_PATH",
    "WORKSPACE_ROOT",
    "WORKSPACE_URI",
    "build_snapshot",
    "load_stub_bundle",
]
