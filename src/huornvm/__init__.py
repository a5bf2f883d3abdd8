"""Local VM bundles with serial console and SSH transports."""

from __future__ import annotations

from pathlib import Path

from .bundle import BundleStore, VMCatalog
from .config import load_config
from .models import SharedFolderConfig, VMConfiguration, VMInfo, VMState
from .transport import SerialConsole, SSHTransport, connect_ssh
from .vm import Engine, VirtualMachine, VMBuilder

__version__ = "0.1.0"


def default_storage_root() -> Path:
    return load_config().resolved_storage_root()


def is_supported(engine: Engine) -> bool:
    return bool(engine.is_supported())


def builder(engine: Engine, *, storage_root: str | Path | None = None) -> VMBuilder:
    return VMBuilder(engine, storage_root=storage_root or default_storage_root())


def load_vm(bundle_path: str | Path, engine: Engine) -> VirtualMachine:
    bundle = Path(bundle_path)
    configuration = BundleStore(bundle.parent).load(bundle)
    return VirtualMachine(bundle, configuration, engine=engine)


def list_vms(storage_root: str | Path | None = None) -> list[VMInfo]:
    return VMCatalog(storage_root or default_storage_root()).list_all()


__all__ = [
    "builder",
    "BundleStore",
    "connect_ssh",
    "default_storage_root",
    "Engine",
    "is_supported",
    "list_vms",
    "load_vm",
    "SerialConsole",
    "SharedFolderConfig",
    "SSHTransport",
    "VirtualMachine",
    "VMBuilder",
    "VMCatalog",
    "VMConfiguration",
    "VMInfo",
    "VMState",
]
