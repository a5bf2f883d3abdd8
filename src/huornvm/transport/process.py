"""External ssh client process supervision."""

from __future__ import annotations

import logging as py_logging
import subprocess
import threading
import time
from collections import deque
from collections.abc import Callable
from contextlib import suppress
from enum import Enum
from typing import IO, Protocol

from huornvm.errors import CommandFailed, ConnectionFailed, NotConnected, TransportError, TransportTimeout

logger = py_logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22
DEFAULT_USERNAME = "admin"
DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_EXECUTE_CONNECT_TIMEOUT = 5
DEFAULT_LIVENESS_WINDOW = 1.0
INITIAL_POLL_SECONDS = 0.05
TERMINATE_GRACE_SECONDS = 2.0
_STDERR_TAIL_LINES = 200
_HOST_KEY_WARNING_PREFIXES = ("Warning: Permanently added",)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class SpawnedProcess(Protocol):
    stdin: IO[bytes] | None
    stdout: IO[bytes] | None
    stderr: IO[bytes] | None
    returncode: int | None

    def poll(self) -> int | None: ...

    def wait(self, timeout: float | None = None) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


ProcessSpawn = Callable[[list[str]], SpawnedProcess]


def _spawn_with_popen(command: list[str]) -> SpawnedProcess:
    return subprocess.Popen(
        command,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        bufsize=0,
    )


def build_ssh_command(
    host: str,
    port: int = DEFAULT_SSH_PORT,
    username: str = DEFAULT_USERNAME,
    *,
    interactive: bool,
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
    command: str | None = None,
    ssh_binary: str = "ssh",
) -> list[str]:
    argv = [
        ssh_binary,
        "-o",
        "StrictHostKeyChecking=no",
        "-o",
        "UserKnownHostsFile=/dev/null",
        "-o",
        "LogLevel=ERROR",
        "-o",
        f"ConnectTimeout={connect_timeout}",
    ]
    if interactive:
        argv.append("-tt")
    argv.extend(["-p", str(port), f"{username}@{host}"])
    if command is not None:
        argv.append(command)
    return argv


def connection_error_reason(stderr_text: str) -> str:
    lines = [
        line.strip()
        for line in stderr_text.splitlines()
        if line.strip() and not line.strip().startswith(_HOST_KEY_WARNING_PREFIXES)
    ]
    return "\n".join(lines) or "Connection failed"


def _write_all(stream: IO[bytes], data: bytes) -> None:
    while data:
        written = stream.write(data)
        data = data[written:] if written else b""
    stream.flush()


class SessionProcess:
    def __init__(
        self,
        host: str,
        port: int = DEFAULT_SSH_PORT,
        username: str = DEFAULT_USERNAME,
        *,
        ssh_binary: str = "ssh",
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        liveness_window: float = DEFAULT_LIVENESS_WINDOW,
        spawn: ProcessSpawn | None = None,
        runner: Callable[..., subprocess.CompletedProcess[str]] = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not host.strip():
            raise TransportError("SSH host cannot be empty.")
        self.host = host.strip()
        self.port = port
        self.username = username
        self.ssh_binary = ssh_binary
        self.connect_timeout = connect_timeout
        self.liveness_window = liveness_window
        self._spawn = spawn or _spawn_with_popen
        self._runner = runner
        self._sleep = sleep
        self._process: SpawnedProcess | None = None
        self._stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        self._stderr_thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.state = SessionState.DISCONNECTED

    @property
    def target(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"

    @property
    def is_connected(self) -> bool:
        process = self._process
        return self.state == SessionState.CONNECTED and process is not None and process.poll() is None

    @property
    def stderr_text(self) -> str:
        return "".join(self._stderr_tail)

    def connect(self) -> None:
        with self._lock:
            if self.state == SessionState.CONNECTED:
                return
            self.state = SessionState.CONNECTING
        command = build_ssh_command(
            self.host,
            self.port,
            self.username,
            interactive=True,
            connect_timeout=self.connect_timeout,
            ssh_binary=self.ssh_binary,
        )
        logger.info("ssh-connect target=%s", self.target)
        try:
            process = self._spawn(command)
        except OSError as exc:
            self.state = SessionState.FAILED
            raise ConnectionFailed(f"Failed to start {self.ssh_binary}: {exc}") from exc

        self._process = process
        self._start_stderr_drain(process)
        if not self._await_liveness(process):
            self._fail_connect(process)
        self.state = SessionState.CONNECTED
        logger.info("ssh-connected target=%s", self.target)

    def _await_liveness(self, process: SpawnedProcess) -> bool:
        # Exponential polling bounded by the liveness window.
        waited = 0.0
        delay = INITIAL_POLL_SECONDS
        while waited < self.liveness_window:
            if process.poll() is not None:
                return False
            step = min(delay, self.liveness_window - waited)
            self._sleep(step)
            waited += step
            delay *= 2
        return process.poll() is None

    def _fail_connect(self, process: SpawnedProcess) -> None:
        if self._stderr_thread is not None:
            self._stderr_thread.join(timeout=TERMINATE_GRACE_SECONDS)
        reason = connection_error_reason(self.stderr_text)
        logger.warning(
            "ssh-connect failed target=%s returncode=%s reason=%s",
            self.target,
            process.poll(),
            reason,
        )
        self._close_pipes(process)
        self._process = None
        self.state = SessionState.FAILED
        raise ConnectionFailed(reason)

    def _start_stderr_drain(self, process: SpawnedProcess) -> None:
        stream = process.stderr
        if stream is None:
            return

        def _drain() -> None:
            with suppress(OSError, ValueError):
                for raw in iter(stream.readline, b""):
                    self._stderr_tail.append(raw.decode("utf-8", errors="replace"))

        self._stderr_thread = threading.Thread(target=_drain, name=f"ssh-stderr-{self.host}", daemon=True)
        self._stderr_thread.start()

    def read(self, size: int) -> bytes:
        process = self._process
        if process is None or process.stdout is None:
            return b""
        return process.stdout.read(size) or b""

    def write(self, data: bytes) -> None:
        process = self._process
        if process is None or process.stdin is None or not self.is_connected:
            raise NotConnected()
        _write_all(process.stdin, data)

    def execute(self, command: str, *, timeout: float | None = None) -> str:
        if not self.is_connected:
            raise NotConnected()
        argv = build_ssh_command(
            self.host,
            self.port,
            self.username,
            interactive=False,
            connect_timeout=DEFAULT_EXECUTE_CONNECT_TIMEOUT,
            command=command,
            ssh_binary=self.ssh_binary,
        )
        logger.debug("ssh-execute target=%s command=%s", self.target, command)
        try:
            completed = self._runner(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise TransportTimeout(f"SSH command timed out after {timeout}s: {command}") from exc
        except OSError as exc:
            raise TransportError(f"Failed to start {self.ssh_binary}: {exc}") from exc

        if completed.returncode != 0:
            logger.warning(
                "ssh-execute failed target=%s returncode=%s command=%s",
                self.target,
                completed.returncode,
                command,
            )
            raise CommandFailed(completed.stderr or "", returncode=completed.returncode)
        return completed.stdout or ""

    def terminate(self) -> None:
        """Stop the client process; its stdout then reaches end-of-stream."""
        if self._process is not None:
            self._terminate_process(self._process)

    @staticmethod
    def _terminate_process(process: SpawnedProcess) -> None:
        if process.poll() is not None:
            return
        with suppress(OSError):
            process.terminate()
        try:
            process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            with suppress(OSError):
                process.kill()
            process.wait(timeout=TERMINATE_GRACE_SECONDS)

    def disconnect(self) -> None:
        with self._lock:
            process = self._process
            self._process = None
            was_connected = self.state == SessionState.CONNECTED
            self.state = SessionState.DISCONNECTED
        if process is None:
            return
        try:
            self._terminate_process(process)
        finally:
            self._close_pipes(process)
        if was_connected:
            logger.info("ssh-disconnect target=%s", self.target)

    @staticmethod
    def _close_pipes(process: SpawnedProcess) -> None:
        for stream in (process.stdin, process.stdout, process.stderr):
            if stream is not None:
                with suppress(OSError, ValueError):
                    stream.close()
