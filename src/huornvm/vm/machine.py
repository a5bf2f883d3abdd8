"""Live VM handle and lifecycle state machine."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from huornvm.errors import (
    ExitCode,
    HuornVMError,
    IPAddressNotFound,
    LifecycleError,
    ProvisioningError,
)
from huornvm.models import VMConfiguration, VMState
from huornvm.transport.console import SerialConsole
from huornvm.transport.ssh import SSHTransport, connect_ssh
from huornvm.vm.engine import Engine

logger = py_logging.getLogger(__name__)

StateObserver = Callable[["VirtualMachine", VMState, VMState], None]


@dataclass(frozen=True)
class _Transition:
    allowed_from: frozenset[VMState]
    pending: VMState | None
    settled: VMState


_TRANSITIONS: dict[str, _Transition] = {
    "start": _Transition(frozenset({VMState.CREATED, VMState.STOPPED}), VMState.STARTING, VMState.RUNNING),
    "pause": _Transition(frozenset({VMState.RUNNING}), VMState.PAUSING, VMState.PAUSED),
    "resume": _Transition(frozenset({VMState.PAUSED}), None, VMState.RUNNING),
    "stop": _Transition(frozenset({VMState.RUNNING, VMState.PAUSED}), VMState.STOPPING, VMState.STOPPED),
}


class VirtualMachine:
    def __init__(
        self,
        bundle_path: str | Path,
        configuration: VMConfiguration,
        *,
        engine: Engine,
        engine_handle: object | None = None,
    ) -> None:
        self.bundle_path = Path(bundle_path)
        self.configuration = configuration
        self._engine = engine
        self._engine_handle = engine_handle
        self._state = VMState.CREATED
        self._observers: list[StateObserver] = []
        self._lock = threading.RLock()
        self._console: SerialConsole | None = None

    def __repr__(self) -> str:
        return f"VirtualMachine(name={self.name!r}, state={self._state.value}, bundle={self.bundle_path})"

    @property
    def name(self) -> str:
        return self.configuration.name

    @property
    def state(self) -> VMState:
        return self._state

    def add_state_observer(self, observer: StateObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def remove_state_observer(self, observer: StateObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def start(self) -> None:
        self._run("start", lambda handle: self._engine.start(handle))

    def pause(self) -> None:
        self._run("pause", lambda handle: self._engine.pause(handle))

    def resume(self) -> None:
        self._run("resume", lambda handle: self._engine.resume(handle))

    def stop(self) -> None:
        self._run("stop", lambda handle: self._engine.stop(handle))

    def mark_failed(self, reason: str = "") -> None:
        """Record an unrecoverable failure reported asynchronously by the engine."""
        with self._lock:
            logger.error("vm-failed name=%s reason=%s", self.name, reason or "engine failure")
            self._set_state(VMState.ERROR)

    @property
    def ip_address(self) -> str | None:
        if self._engine_handle is None:
            return None
        return self._engine.current_ip_address(self._engine_handle)

    @property
    def console(self) -> SerialConsole:
        with self._lock:
            if self._console is None or not self._console.is_open:
                self._console = self._open_console()
            return self._console

    def connect_ssh(self, username: str = "admin", **options: object) -> SSHTransport:
        address = self.ip_address
        if not address:
            raise IPAddressNotFound()
        return connect_ssh(address, username=username, **options)  # type: ignore[arg-type]

    def close(self) -> None:
        with self._lock:
            console = self._console
            self._console = None
        if console is not None:
            console.stop()

    def _open_console(self) -> SerialConsole:
        console = SerialConsole(name=f"console:{self.name}")
        read_fd, write_fd = console.guest_fds
        try:
            self._engine.attach_console(self._ensure_engine_handle(), read_fd, write_fd)
        except Exception:
            console.stop()
            raise
        logger.debug("vm-console attached name=%s", self.name)
        return console

    def _ensure_engine_handle(self) -> object:
        if self._engine_handle is None:
            logger.debug("vm-restore name=%s bundle=%s", self.name, self.bundle_path)
            self._engine_handle = self._engine.restore(self.configuration, self.bundle_path)
        return self._engine_handle

    def _run(self, operation: str, action: Callable[[object], None]) -> None:
        transition = _TRANSITIONS[operation]
        with self._lock:
            if self._state not in transition.allowed_from:
                raise LifecycleError(self._state.value, operation)
            if transition.pending is not None:
                self._set_state(transition.pending)
            try:
                action(self._ensure_engine_handle())
            except Exception as exc:
                self._set_state(VMState.ERROR)
                if isinstance(exc, HuornVMError):
                    raise
                raise ProvisioningError(
                    f"Failed to {operation} VM {self.name}: {exc}",
                    code=ExitCode.RUNTIME_ERROR,
                ) from exc
            self._set_state(transition.settled)

    def _set_state(self, new_state: VMState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.info("vm-state name=%s from=%s to=%s", self.name, old_state.value, new_state.value)
        for observer in list(self._observers):
            try:
                observer(self, old_state, new_state)
            except Exception:
                logger.exception("vm-state observer failed name=%s", self.name)
