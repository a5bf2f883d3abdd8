from __future__ import annotations

import os
import select
import threading

from huornvm.transport import DuplexTransport, SerialConsole

_TIMEOUT = 5.0


class _ClosedFlag:
    def __init__(self) -> None:
        self.closed = threading.Event()
        self.chunks: list[bytes] = []

    def transport_received(self, transport: DuplexTransport, data: bytes) -> None:
        self.chunks.append(data)

    def transport_closed(self, transport: DuplexTransport) -> None:
        self.closed.set()


def test_guest_output_reaches_buffer() -> None:
    console = SerialConsole(name="console:test")
    try:
        _guest_read, guest_write = console.guest_fds
        os.write(guest_write, b"macOS login: ")

        assert console.wait_for_output("login:", timeout=_TIMEOUT)
        assert console.output == "macOS login: "
    finally:
        console.stop()


def test_host_input_reaches_guest_side() -> None:
    console = SerialConsole()
    try:
        guest_read, _guest_write = console.guest_fds
        console.send("admin\n")

        ready, _, _ = select.select([guest_read], [], [], _TIMEOUT)
        assert ready
        assert os.read(guest_read, 64) == b"admin\n"
    finally:
        console.stop()


def test_stop_unblocks_reader_and_notifies_observer() -> None:
    console = SerialConsole()
    observer = _ClosedFlag()
    console.attach(observer)

    console.stop()
    console.stop()

    assert observer.closed.wait(_TIMEOUT)
    assert console.reached_eof
    assert not console.is_open


def test_console_without_autostart_buffers_after_start() -> None:
    console = SerialConsole(autostart=False)
    try:
        _guest_read, guest_write = console.guest_fds
        os.write(guest_write, b"early")

        console.start()

        assert console.wait_for_output("early", timeout=_TIMEOUT)
    finally:
        console.stop()
