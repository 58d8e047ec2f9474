"""Scratch directory mirroring the engine's virtual filesystem."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

from ..paths import scratch_relative


class VirtualTree:
    """Materialize virtual absolute paths under a private scratch root."""

    def __init__(self, root: Path | None = None) -> None:
        self._owned = root is None
        base = root if root is not None else Path(tempfile.mkdtemp(prefix="omnicheck-"))
        base.mkdir(parents=True, exist_ok=True)
        self.root = base.resolve()
        self._virtual_by_real: dict[str, str] = {}

    def real_path(self, virtual_path: str) -> Path:
        return self.root / scratch_relative(virtual_path)

    def virtual_path(self, real_path: str | Path) -> str | None:
        return self._virtual_by_real.get(str(Path(real_path).resolve()))

    def write(self, virtual_path: str, text: str) -> Path:
        real = self.real_path(virtual_path)
        real.parent.mkdir(parents=True, exist_ok=True)
        real.write_text(text, encoding="utf-8")
        self._virtual_by_real[str(real.resolve())] = virtual_path
        return real

    def remove(self, virtual_path: str) -> None:
        real = self.real_path(virtual_path)
        self._virtual_by_real.pop(str(real.resolve()), None)
        real.unlink(missing_ok=True)

    def exists(self, virtual_path: str) -> bool:
        return self.real_path(virtual_path).exists()

    def cleanup(self) -> None:
        self._virtual_by_real.clear()
        if self._owned:
            shutil.rmtree(self.root, ignore_errors=True)


__all__ = ["VirtualTree"]
