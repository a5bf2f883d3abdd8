"""Duplex console and SSH transports."""

from .base import DuplexTransport, TransportObserver
from .buffer import OutputBuffer
from .console import SerialConsole
from .process import SessionProcess, SessionState, build_ssh_command
from .ssh import SSHTransport, connect_ssh

__all__ = [
    "build_ssh_command",
    "connect_ssh",
    "DuplexTransport",
    "OutputBuffer",
    "SerialConsole",
    "SessionProcess",
    "SessionState",
    "SSHTransport",
    "TransportObserver",
]
