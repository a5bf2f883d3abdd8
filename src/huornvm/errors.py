"""Deterministic error model and exit code contract."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path


class ExitCode(IntEnum):
    SUCCESS = 0
    INVALID_ARGS = 2
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4
    BUNDLE_ERROR = 5
    TRANSPORT_ERROR = 6
    VALIDATION_ERROR = 7
    UNSUPPORTED_PLATFORM = 8
    LIFECYCLE_ERROR = 9


@dataclass
class HuornVMError(Exception):
    message: str
    code: ExitCode = ExitCode.RUNTIME_ERROR
    hint: str = ""

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} Hint: {self.hint}"
        return self.message


class ConfigurationError(HuornVMError):
    """Invalid or missing build inputs."""


class BundleError(HuornVMError):
    """Bundle directory is absent or incomplete."""


class ProvisioningError(HuornVMError):
    """Engine reported an install/start/stop failure."""


class TransportError(HuornVMError):
    """Console or SSH session failure."""


class LifecycleError(HuornVMError):
    def __init__(self, state: str, operation: str) -> None:
        super().__init__(
            f"Cannot {operation} a VM in state '{state}'.",
            code=ExitCode.LIFECYCLE_ERROR,
            hint="Check the VM state before issuing lifecycle operations.",
        )
        self.state = state
        self.operation = operation


class VirtualizationNotSupported(ConfigurationError):
    def __init__(self) -> None:
        super().__init__(
            "Virtualization is not supported on this host.",
            code=ExitCode.UNSUPPORTED_PLATFORM,
            hint="Enable hardware virtualization or use a supported engine.",
        )


class ConfigurationInvalid(ConfigurationError):
    def __init__(self, reason: str) -> None:
        super().__init__(
            f"Invalid VM configuration: {reason}",
            code=ExitCode.VALIDATION_ERROR,
        )
        self.reason = reason


class BundleNotFound(BundleError):
    def __init__(self, bundle_path: str | Path) -> None:
        super().__init__(
            f"VM bundle not found at: {bundle_path}",
            code=ExitCode.BUNDLE_ERROR,
            hint="Check the bundle path or run `huornvm list`.",
        )
        self.bundle_path = Path(bundle_path)


class BundleInvalid(BundleError):
    def __init__(self, reason: str, *, missing: list[str] | None = None) -> None:
        super().__init__(f"Invalid VM bundle: {reason}", code=ExitCode.BUNDLE_ERROR)
        self.reason = reason
        self.missing = list(missing or [])


class DiskCreationFailed(ProvisioningError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to create disk: {reason}", code=ExitCode.RUNTIME_ERROR)
        self.reason = reason


class ConnectionFailed(TransportError):
    def __init__(self, reason: str) -> None:
        super().__init__(
            f"SSH connection failed: {reason}",
            code=ExitCode.TRANSPORT_ERROR,
            hint="Verify the guest is reachable and sshd is running.",
        )
        self.reason = reason


class NotConnected(TransportError):
    def __init__(self, message: str = "Not connected to SSH server.") -> None:
        super().__init__(message, code=ExitCode.TRANSPORT_ERROR)


class CommandFailed(TransportError):
    def __init__(self, stderr: str, *, returncode: int | None = None) -> None:
        super().__init__(f"SSH command failed: {stderr.strip()}", code=ExitCode.TRANSPORT_ERROR)
        self.stderr = stderr
        self.returncode = returncode


class TransportTimeout(TransportError):
    def __init__(self, message: str = "SSH connection timed out.") -> None:
        super().__init__(message, code=ExitCode.TRANSPORT_ERROR)


class IPAddressNotFound(TransportError):
    def __init__(self) -> None:
        super().__init__(
            "Could not determine VM IP address.",
            code=ExitCode.TRANSPORT_ERROR,
            hint="Wait for the guest network to come up.",
        )


def user_facing_error(message: str, *, hint: str = "") -> str:
    if hint:
        return f"Error: {message}. Next step: {hint}"
    return f"Error: {message}."
