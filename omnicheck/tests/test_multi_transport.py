"""Primary/satellite boot handshake."""

from __future__ import annotations

import time
from multiprocessing import Pipe

import orjson
import pytest

from omnicheck.errors import TransportClosedError, WorkerError
from omnicheck.lsp_client.messages import make_request, make_response
from omnicheck.transport.multi import BootState, MultiWorkerTransport
from omnicheck.transport.vfs import CONFIG_PATH, DOCUMENT_PATH, build_snapshot

from .fakes import RecordingWorker


class Factory:
    def __init__(
        self, *, fail_names: tuple[str, ...] = (), fail_post: bool = False, fail_satellite_post: bool = False
    ) -> None:
        self.workers: dict[str, RecordingWorker] = {}
        self._fail_names = fail_names
        self._fail_post = fail_post
        self._fail_satellite_post = fail_satellite_post

    def __call__(self, name: str) -> RecordingWorker:
        if name in self._fail_names:
            raise WorkerError(f"cannot start {name}")
        if name.endswith("primary"):
            worker = RecordingWorker(name, fail_post=self._fail_post)
        else:
            worker = RecordingWorker(name, fail_post=self._fail_satellite_post)
        self.workers[name] = worker
        return worker

    @property
    def primary(self) -> RecordingWorker:
        return self.workers["omnicheck-primary"]


@pytest.fixture()
def snapshot() -> dict[str, str]:
    return build_snapshot(python_version="3.12", strict=True, satellites=2, stubs={"typeshed/stdlib/VERSIONS": "builtins: 3.0-\n"})


def _transport(factory: Factory, snapshot: dict[str, str], **kwargs) -> MultiWorkerTransport:
    kwargs.setdefault("grace_period", 5.0)
    return MultiWorkerTransport(factory, files=snapshot, **kwargs)


def test_primary_receives_boot_message(snapshot: dict[str, str]) -> None:
    factory = Factory()
    transport = _transport(factory, snapshot)
    assert factory.primary.posted == [({"type": "boot", "role": "primary"}, [])]
    assert transport.state is BootState.BOOTING
    transport.close()


def test_spawn_requests_fan_out_to_satellites(snapshot: dict[str, str]) -> None:
    factory = Factory()
    transport = _transport(factory, snapshot)
    endpoints = []
    for index in range(3):
        local, remote = Pipe()
        endpoints.append(remote)
        factory.primary.receive({"type": "spawn-request", "initialData": {"index": index}, "endpoint": remote})

    assert len(transport.satellites) == 3
    seen = []
    for number, satellite in enumerate(transport.satellites, start=1):
        assert satellite.name == f"omnicheck-satellite-{number}"
        assert len(satellite.posted) == 1
        message, transfer = satellite.posted[0]
        assert message["type"] == "boot"
        assert message["role"] == "satellite"
        assert message["initialData"] == {"index": number - 1}
        assert transfer == [message["endpoint"]]
        seen.append(message["endpoint"])
    assert len({id(endpoint) for endpoint in seen}) == 3
    assert seen == endpoints
    transport.close()


def test_boot_messages_are_not_delivered(snapshot: dict[str, str]) -> None:
    factory = Factory()
    transport = _transport(factory, snapshot)
    received: list[dict] = []
    transport.subscribe(received.append)
    factory.primary.receive({"type": "ready", "role": "primary"})
    other_local, other_remote = Pipe()
    factory.primary.receive({"type": "spawn-request", "initialData": {}, "endpoint": other_remote})
    factory.primary.receive(make_response(1, None))
    assert received == [make_response(1, None)]
    transport.close()


def test_initialize_is_rewritten_with_snapshot(snapshot: dict[str, str]) -> None:
    factory = Factory()
    transport = _transport(factory, snapshot)
    original = make_request(1, "initialize", {"rootUri": "file:///home/user", "initializationOptions": {"strict": False}})
    transport.send(original)
    transport.send(make_request(2, "shutdown"))

    [boot, (initialize, _), (shutdown, _)] = factory.primary.posted
    params = initialize["params"]
    assert params["rootUri"] == "file:///workspace"
    assert params["rootPath"] == "/workspace"
    assert params["workspaceFolders"] == [{"uri": "file:///workspace", "name": "workspace"}]
    files = params["initializationOptions"]["files"]
    assert files[DOCUMENT_PATH] == ""
    assert files["/workspace/typeshed/stdlib/VERSIONS"] == "builtins: 3.0-\n"
    assert orjson.loads(files[CONFIG_PATH])["pythonVersion"] == "3.12"
    assert original["params"]["rootUri"] == "file:///home/user"
    assert shutdown == make_request(2, "shutdown")
    transport.close()


def test_explicit_ready_acknowledgement(snapshot: dict[str, str]) -> None:
    factory = Factory()
    transport = _transport(factory, snapshot)
    factory.primary.receive({"type": "ready", "role": "primary"})
    assert transport.ready.result(timeout=1) is BootState.READY
    assert transport.state is BootState.READY
    transport.close()


def test_first_protocol_message_marks_ready(snapshot: dict[str, str]) -> None:
    factory = Factory()
    transport = _transport(factory, snapshot)
    factory.primary.receive(make_response(1, None))
    assert transport.ready.result(timeout=1) is BootState.READY
    transport.close()


def test_grace_period_marks_degraded(snapshot: dict[str, str]) -> None:
    factory = Factory()
    transport = _transport(factory, snapshot, grace_period=0.01)
    assert transport.ready.result(timeout=2) is BootState.DEGRADED
    factory.primary.receive({"type": "ready"})
    assert transport.state is BootState.DEGRADED
    transport.close()


def test_primary_error_fails_readiness(snapshot: dict[str, str]) -> None:
    factory = Factory()
    errors: list[Exception] = []
    transport = _transport(factory, snapshot, on_error=errors.append)
    factory.primary.fail(WorkerError("primary crashed"))
    with pytest.raises(WorkerError):
        transport.ready.result(timeout=1)
    assert transport.state is BootState.FAILED
    assert len(errors) == 1
    transport.close()


def test_primary_construction_failure_is_reported(snapshot: dict[str, str]) -> None:
    errors: list[Exception] = []
    transport = _transport(Factory(fail_names=("omnicheck-primary",)), snapshot, on_error=errors.append)
    assert transport.state is BootState.FAILED
    assert isinstance(errors[0], WorkerError)
    with pytest.raises(TransportClosedError):
        transport.send(make_request(1, "initialize", {}))
    transport.close()


def test_boot_post_failure_is_reported(snapshot: dict[str, str]) -> None:
    errors: list[Exception] = []
    transport = _transport(Factory(fail_post=True), snapshot, on_error=errors.append)
    assert transport.state is BootState.FAILED
    assert len(errors) == 1
    transport.close()


def test_close_before_ready_rejects_readiness(snapshot: dict[str, str]) -> None:
    transport = _transport(Factory(), snapshot)
    transport.close()
    with pytest.raises(TransportClosedError):
        transport.ready.result(timeout=1)
    assert transport.state is BootState.CLOSED


def test_close_terminates_every_worker_once(snapshot: dict[str, str]) -> None:
    factory = Factory()
    closes: list[int] = []
    transport = _transport(factory, snapshot, on_close=lambda: closes.append(1))
    for _ in range(2):
        factory.primary.receive({"type": "spawn-request", "initialData": {}, "endpoint": Pipe()[1]})

    transport.close()
    transport.close()

    assert closes == [1]
    assert [worker.terminations for worker in factory.workers.values()] == [1, 1, 1]
    assert transport.satellites == []


def test_spawn_after_close_is_ignored(snapshot: dict[str, str]) -> None:
    factory = Factory()
    transport = _transport(factory, snapshot)
    primary = factory.primary
    transport.close()
    primary.receive({"type": "spawn-request", "initialData": {}, "endpoint": Pipe()[1]})
    assert len(factory.workers) == 1


def test_grace_timer_does_not_fire_after_close(snapshot: dict[str, str]) -> None:
    transport = _transport(Factory(), snapshot, grace_period=0.01)
    transport.close()
    time.sleep(0.05)
    assert transport.state is BootState.CLOSED


def test_satellite_boot_failure_is_contained(snapshot: dict[str, str]) -> None:
    factory = Factory(fail_satellite_post=True)
    errors: list[Exception] = []
    transport = _transport(factory, snapshot, on_error=errors.append)
    received = []
    transport.subscribe(received.append)
    local, remote = Pipe()
    factory.primary.receive({"type": "spawn-request", "initialData": {}, "endpoint": remote})
    assert remote.closed
    assert transport.satellites == []
    assert factory.workers["omnicheck-satellite-1"].terminations == 1
    assert errors == []

    factory.primary.receive(orjson.dumps(make_response(1, {"ok": True})).decode())
    assert received == [make_response(1, {"ok": True})]
    transport.close()
    local.close()


def test_satellite_crash_drops_the_satellite(snapshot: dict[str, str]) -> None:
    factory = Factory()
    transport = _transport(factory, snapshot)
    local, remote = Pipe()
    factory.primary.receive({"type": "spawn-request", "initialData": {}, "endpoint": remote})
    [satellite] = transport.satellites
    satellite.fail(WorkerError("satellite exited"))
    assert transport.satellites == []
    assert satellite.terminations == 1
    assert transport.state is BootState.BOOTING

    other_local, other_remote = Pipe()
    factory.primary.receive({"type": "spawn-request", "initialData": {}, "endpoint": other_remote})
    assert [worker.name for worker in transport.satellites] == ["omnicheck-satellite-2"]
    transport.close()
    assert satellite.terminations == 1
    for connection in (local, remote, other_local, other_remote):
        connection.close()
