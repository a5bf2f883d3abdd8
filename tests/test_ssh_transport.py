from __future__ import annotations

import threading

import pytest
from fakes_ssh import FakeRunner, FakeSpawn, FakeSshProcess

from huornvm.errors import ConnectionFailed, NotConnected, TransportTimeout
from huornvm.transport import DuplexTransport, SSHTransport, connect_ssh

_TIMEOUT = 5.0


class _Collector:
    def __init__(self) -> None:
        self.data = b""
        self.closed = threading.Event()

    def transport_received(self, transport: DuplexTransport, data: bytes) -> None:
        self.data += data

    def transport_closed(self, transport: DuplexTransport) -> None:
        self.closed.set()


def _connect(process: FakeSshProcess, **options: object) -> SSHTransport:
    return connect_ssh(
        "10.0.0.9",
        username="admin",
        spawn=FakeSpawn(process),
        sleep=lambda _seconds: None,
        **options,  # type: ignore[arg-type]
    )


def test_interactive_output_and_input_flow_through_session() -> None:
    process = FakeSshProcess()
    transport = _connect(process)
    try:
        collector = _Collector()
        transport.attach(collector)
        process.stdout.feed(b"admin@vm1 ~ % ")

        assert transport.wait_for_output("% ", timeout=_TIMEOUT)
        transport.send("whoami\n")

        assert process.stdin.data == b"whoami\n"
        assert transport.is_connected
        assert transport.name == "ssh:admin@10.0.0.9:22"
        assert (transport.host, transport.port, transport.username) == ("10.0.0.9", 22, "admin")
    finally:
        transport.disconnect()


def test_ready_marker_is_awaited() -> None:
    process = FakeSshProcess()
    process.stdout.feed(b"Last login: today\nadmin@vm1 ~ % ")

    transport = _connect(process, ready_marker="% ")
    try:
        assert "Last login" in transport.output
    finally:
        transport.disconnect()


def test_missing_ready_marker_times_out_and_cleans_up() -> None:
    process = FakeSshProcess()

    with pytest.raises(TransportTimeout, match="did not become ready"):
        _connect(process, ready_marker="% ", connect_timeout=1)

    assert process.terminated


def test_connection_failure_propagates() -> None:
    process = FakeSshProcess(exit_code=255, stderr=b"Permission denied (publickey).\n")

    with pytest.raises(ConnectionFailed) as exc_info:
        _connect(process)

    assert exc_info.value.reason == "Permission denied (publickey)."


def test_disconnect_terminates_process_and_closes_once() -> None:
    process = FakeSshProcess()
    transport = _connect(process)
    collector = _Collector()
    transport.attach(collector)

    transport.disconnect()
    transport.disconnect()

    assert collector.closed.wait(_TIMEOUT)
    assert process.terminated
    assert not transport.is_connected
    with pytest.raises(NotConnected):
        transport.send("late")


def test_remote_exit_ends_stream() -> None:
    process = FakeSshProcess()
    transport = _connect(process)
    collector = _Collector()
    transport.attach(collector)

    process.stdout.feed(b"logout\n")
    process.returncode = 0
    process.stdout.close()

    try:
        assert collector.closed.wait(_TIMEOUT)
        assert transport.reached_eof
        assert collector.data == b"logout\n"
        assert not transport.is_connected
    finally:
        transport.disconnect()


def test_execute_delegates_to_batch_runner() -> None:
    runner = FakeRunner(stdout="ok\n")
    transport = _connect(FakeSshProcess(), runner=runner)
    try:
        assert transport.execute("echo ok") == "ok\n"
        assert runner.calls[0][0][-1] == "echo ok"
    finally:
        transport.disconnect()
