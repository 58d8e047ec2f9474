"""Registry of checkers and the transports that reach them."""

from __future__ import annotations

import functools
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from .adapter.serve import single_worker_main
from .config import OmniCheckConfig
from .engine.pool import POOL_SOURCE, pool_worker_main
from .logging import get_logger
from .transport.base import Transport
from .transport.multi import MultiWorkerTransport
from .transport.single import ErrorCallback, SingleWorkerTransport
from .transport.vfs import build_snapshot, load_stub_bundle
from .transport.worker import ProcessWorker

LOGGER = get_logger(__name__)


class CheckerKind(str, Enum):
    MYPY = "mypy"
    MYPY_POOL = "mypy-pool"
    PYRIGHT = "pyright"
    PYREFLY = "pyrefly"


class Integration(str, Enum):
    SINGLE = "single"
    MULTI = "multi"


@dataclass(frozen=True, slots=True)
class CheckerSpec:
    kind: CheckerKind
    label: str
    integration: Integration | None
    source: str

    @property
    def integrated(self) -> bool:
        return self.integration is not None

    def request_timeout(self, config: OmniCheckConfig) -> float:
        """Per-request deadline in seconds; pooled engines get the longer budget."""
        if self.integration is Integration.MULTI:
            return config.lsp.pool_request_timeout_ms / 1000
        return config.lsp.request_timeout_ms / 1000


CHECKERS: dict[CheckerKind, CheckerSpec] = {
    CheckerKind.MYPY: CheckerSpec(CheckerKind.MYPY, "mypy", Integration.SINGLE, "mypy"),
    CheckerKind.MYPY_POOL: CheckerSpec(CheckerKind.MYPY_POOL, "mypy (worker pool)", Integration.MULTI, POOL_SOURCE),
    CheckerKind.PYRIGHT: CheckerSpec(CheckerKind.PYRIGHT, "Pyright", None, "pyright"),
    CheckerKind.PYREFLY: CheckerSpec(CheckerKind.PYREFLY, "Pyrefly", None, "pyrefly"),
}

TransportFactory = Callable[[CheckerSpec, OmniCheckConfig, ErrorCallback], Transport]


def get_checker(name: str | CheckerKind) -> CheckerSpec:
    try:
        return CHECKERS[CheckerKind(name)]
    except ValueError:
        choices = ", ".join(kind.value for kind in CheckerKind)
        raise ValueError(f"Unknown checker {name!r}; expected one of: {choices}") from None


def default_transport_factory(spec: CheckerSpec, config: OmniCheckConfig, on_error: ErrorCallback) -> Transport:
    """Start the worker(s) for ``spec`` and wrap them in the matching transport."""
    name = f"omnicheck-{spec.kind.value}"
    if spec.integration is Integration.SINGLE:
        worker = ProcessWorker(
            functools.partial(single_worker_main, source=spec.source),
            name=name,
            log_level=config.log_level,
        )
        return SingleWorkerTransport(worker, on_error=on_error)
    if spec.integration is Integration.MULTI:
        stubs = load_stub_bundle(Path(config.stub_bundle) if config.stub_bundle else None)
        files = build_snapshot(
            python_version=config.python_version,
            strict=config.strict,
            satellites=config.lsp.satellites,
            stubs=stubs,
            cache_dir=config.cache_dir,
            satellite_timeout_ms=config.lsp.satellite_timeout_ms,
        )
        LOGGER.debug("Prepared snapshot with %d file(s) for %s", len(files), spec.kind.value)
        return MultiWorkerTransport(
            lambda worker_name: ProcessWorker(pool_worker_main, name=worker_name, log_level=config.log_level),
            files=files,
            name=name,
            grace_period=config.lsp.boot_grace_ms / 1000,
            on_error=on_error,
        )
    raise ValueError(f"Checker {spec.kind.value} has no worker integration")


__all__ = [
    "CHECKERS",
    "CheckerKind",
    "CheckerSpec",
    "Integration",
    "TransportFactory",
    "default_transport_factory",
    "get_checker",
]
