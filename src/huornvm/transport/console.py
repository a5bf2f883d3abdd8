"""Serial console transport over an OS pipe pair."""

from __future__ import annotations

import os
import select
from contextlib import suppress

from huornvm.transport.base import DuplexTransport
from huornvm.transport.buffer import DEFAULT_MAX_SIZE, DEFAULT_TRIM_SLACK


class SerialConsole(DuplexTransport):
    """Console whose guest side is handed to the engine as raw descriptors.

    ``guest_fds`` is ``(read_fd, write_fd)``: the guest reads host input from
    the first and writes its console output to the second.
    """

    def __init__(
        self,
        *,
        name: str = "console",
        max_buffer_size: int = DEFAULT_MAX_SIZE,
        trim_slack: int = DEFAULT_TRIM_SLACK,
        autostart: bool = True,
    ) -> None:
        super().__init__(name=name, max_buffer_size=max_buffer_size, trim_slack=trim_slack)
        self._input_read, self._input_write = os.pipe()
        self._output_read, self._output_write = os.pipe()
        self._wake_read, self._wake_write = os.pipe()
        if autostart:
            self.start()

    @property
    def guest_fds(self) -> tuple[int, int]:
        return self._input_read, self._output_write

    def _read(self, size: int) -> bytes:
        ready, _, _ = select.select([self._output_read, self._wake_read], [], [])
        if self._wake_read in ready:
            return b""
        return os.read(self._output_read, size)

    def _write(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(self._input_write, view)
            view = view[written:]

    def _interrupt(self) -> None:
        os.write(self._wake_write, b"\0")

    def _release(self) -> None:
        for fd in (
            self._input_read,
            self._input_write,
            self._output_read,
            self._output_write,
            self._wake_read,
            self._wake_write,
        ):
            with suppress(OSError):
                os.close(fd)
