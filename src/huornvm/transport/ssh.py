"""Interactive SSH transport backed by an external ssh client."""

from __future__ import annotations

import logging as py_logging
import subprocess
import time
from collections.abc import Callable

from huornvm.errors import TransportTimeout
from huornvm.transport.base import DuplexTransport
from huornvm.transport.buffer import DEFAULT_MAX_SIZE, DEFAULT_TRIM_SLACK
from huornvm.transport.process import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_LIVENESS_WINDOW,
    DEFAULT_SSH_PORT,
    DEFAULT_USERNAME,
    ProcessSpawn,
    SessionProcess,
)

logger = py_logging.getLogger(__name__)


class SSHTransport(DuplexTransport):
    def __init__(
        self,
        session: SessionProcess,
        *,
        max_buffer_size: int = DEFAULT_MAX_SIZE,
        trim_slack: int = DEFAULT_TRIM_SLACK,
    ) -> None:
        super().__init__(
            name=f"ssh:{session.target}",
            max_buffer_size=max_buffer_size,
            trim_slack=trim_slack,
        )
        self.session = session

    @property
    def host(self) -> str:
        return self.session.host

    @property
    def port(self) -> int:
        return self.session.port

    @property
    def username(self) -> str:
        return self.session.username

    @property
    def is_connected(self) -> bool:
        return self.is_open and self.session.is_connected

    def execute(self, command: str, *, timeout: float | None = None) -> str:
        return self.session.execute(command, timeout=timeout)

    def _read(self, size: int) -> bytes:
        return self.session.read(size)

    def _write(self, data: bytes) -> None:
        self.session.write(data)

    def _interrupt(self) -> None:
        self.session.terminate()

    def _release(self) -> None:
        self.session.disconnect()


def connect_ssh(
    host: str,
    port: int = DEFAULT_SSH_PORT,
    username: str = DEFAULT_USERNAME,
    *,
    ready_marker: str | None = None,
    ssh_binary: str = "ssh",
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
    liveness_window: float = DEFAULT_LIVENESS_WINDOW,
    max_buffer_size: int = DEFAULT_MAX_SIZE,
    trim_slack: int = DEFAULT_TRIM_SLACK,
    spawn: ProcessSpawn | None = None,
    runner: Callable[..., subprocess.CompletedProcess[str]] = subprocess.run,
    sleep: Callable[[float], None] = time.sleep,
) -> SSHTransport:
    """Open an interactive session and start draining its output.

    With ``ready_marker`` the session only counts as connected once the
    marker (e.g. a shell prompt) shows up within ``connect_timeout``.
    """
    session = SessionProcess(
        host,
        port,
        username,
        ssh_binary=ssh_binary,
        connect_timeout=connect_timeout,
        liveness_window=liveness_window,
        spawn=spawn,
        runner=runner,
        sleep=sleep,
    )
    session.connect()
    transport = SSHTransport(session, max_buffer_size=max_buffer_size, trim_slack=trim_slack)
    transport.start()
    if ready_marker and not transport.wait_for_output(ready_marker, timeout=connect_timeout):
        logger.warning("ssh-ready marker missing target=%s marker=%r", session.target, ready_marker)
        transport.disconnect()
        raise TransportTimeout(f"SSH session to {session.target} did not become ready in {connect_timeout}s.")
    return transport
