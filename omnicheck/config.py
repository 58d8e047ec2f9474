"""Configuration models for omnicheck."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

PythonVersion = Literal["3.9", "3.10", "3.11", "3.12", "3.13", "3.14"]


class LspConfig(BaseModel):
    request_timeout_ms: int = 20_000
    pool_request_timeout_ms: int = 60_000
    boot_grace_ms: int = 500
    satellites: int = Field(default=2, ge=0)
    satellite_timeout_ms: int = 45_000


class OmniCheckConfig(BaseModel):
    checker: str = "mypy"
    python_version: PythonVersion = "3.12"
    strict: bool = True
    root_uri: str = "file:///workspace"
    document_uri: str = "file:///workspace/main.py"
    stub_bundle: str | None = None
    cache_dir: str = Field(default_factory=lambda: str(Path.home() / ".cache" / "omnicheck"))
    log_level: str = "INFO"
    lsp: LspConfig = Field(default_factory=LspConfig)


__all__ = ["LspConfig", "OmniCheckConfig", "PythonVersion"]
