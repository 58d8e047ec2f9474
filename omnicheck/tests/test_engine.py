"""Engine helpers: scratch tree, mypy output parsing and snapshot settings."""

from __future__ import annotations

from pathlib import Path

import orjson

from omnicheck.engine.base import EnginePosition, EngineRange, Severity
from omnicheck.engine.mypy_runner import EngineSettings, parse_mypy_output
from omnicheck.engine.pool import settings_from_snapshot
from omnicheck.engine.tree import VirtualTree
from omnicheck.transport.vfs import CONFIG_PATH, DOCUMENT_PATH, build_snapshot, load_stub_bundle


def test_virtual_tree_maps_paths_both_ways(tmp_path: Path) -> None:
    tree = VirtualTree(tmp_path / "scratch")
    real = tree.write("/file:/workspace/main.py", "x = 1\n")
    assert real.read_text(encoding="utf-8") == "x = 1\n"
    assert real.is_relative_to(tree.root)
    assert tree.virtual_path(real) == "/file:/workspace/main.py"
    tree.remove("/file:/workspace/main.py")
    assert not tree.exists("/file:/workspace/main.py")
    assert tree.virtual_path(real) is None
    tree.cleanup()
    assert tree.root.exists()


def test_parse_mypy_output(tmp_path: Path) -> None:
    tree = VirtualTree(tmp_path)
    main = tree.write("/workspace/main.py", "")
    other = tree.write("/workspace/other.py", "")
    stdout = "\n".join(
        [
            f'{main}:5:15:5:28: error: Incompatible types in assignment  [assignment]',
            f"{main}:7: note: See https://mypy.readthedocs.io",
            f"{other}:1:1: warning: unused section",
            "/elsewhere/site.py:1:1: error: outside the tree",
            "Success: no issues found in 1 source file",
            "garbage",
        ]
    )
    grouped = parse_mypy_output(stdout, tree)
    assert set(grouped) == {"/workspace/main.py", "/workspace/other.py"}
    error, note = grouped["/workspace/main.py"]
    assert error.severity is Severity.ERROR
    assert error.code == "assignment"
    assert error.message == "Incompatible types in assignment"
    assert error.range == EngineRange(EnginePosition(5, 15), EnginePosition(5, 29))
    assert note.severity is Severity.INFO
    assert note.range is None
    [warning] = grouped["/workspace/other.py"]
    assert warning.range == EngineRange(EnginePosition(1, 1), EnginePosition(1, 2))


def test_snapshot_layout() -> None:
    files = build_snapshot(
        python_version="3.13",
        strict=False,
        satellites=3,
        stubs={"/typeshed/stdlib/builtins.pyi": "class int: ..."},
        cache_dir="/tmp/cache",
    )
    assert files[DOCUMENT_PATH] == ""
    assert files["/workspace/.root"] == ""
    assert files["/workspace/typeshed/stdlib/builtins.pyi"] == "class int: ..."
    config = orjson.loads(files[CONFIG_PATH])
    assert config == {
        "pythonVersion": "3.13",
        "strict": False,
        "typeshedPath": "/workspace/typeshed",
        "stubPath": "",
        "satellites": 3,
        "cacheDir": "/tmp/cache",
    }


def test_settings_from_snapshot() -> None:
    files = build_snapshot(python_version="3.10", strict=True, satellites=2, stubs={})
    settings, satellites = settings_from_snapshot(files, cache_dir="/tmp/fallback")
    assert satellites == 2
    assert settings.python_version == "3.10"
    assert settings.strict is True
    assert settings.typeshed_path == "/workspace/typeshed"
    assert settings.cache_dir == "/tmp/fallback"
    assert EngineSettings.from_dict(settings.to_dict()) == settings


def test_missing_stub_bundle_yields_no_stubs(tmp_path: Path) -> None:
    assert load_stub_bundle(tmp_path / "absent.json") == {}
    bundle = tmp_path / "bundle.json"
    bundle.write_bytes(orjson.dumps({"/typeshed/stdlib/VERSIONS": "builtins: 3.0-"}))
    assert load_stub_bundle(bundle) == {"/typeshed/stdlib/VERSIONS": "builtins: 3.0-"}
