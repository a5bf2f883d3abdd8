"""Virtualization engine collaborator contract."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from huornvm.models import VMConfiguration


@dataclass(frozen=True)
class ImageRequirements:
    min_cpu: int
    min_memory: int
    hardware_model: bytes = b""


class Engine(Protocol):
    """Hypervisor backend consumed by the builder and VM handles.

    ``provision`` must write the hardware-model, machine-identity and
    auxiliary-storage artifacts into ``bundle_path`` and install the guest
    onto the already allocated ``disk.img``. Engine handles are opaque.

    ``attach_console`` connects the guest serial port to a descriptor pair:
    the guest reads host input from ``read_fd`` and writes its output to
    ``write_fd``. The descriptors stay owned by the caller and are closed
    when the console stops; a later call replaces the previous pair.
    """

    def is_supported(self) -> bool: ...

    def image_requirements(self, image: Path) -> ImageRequirements: ...

    def provision(
        self,
        config: VMConfiguration,
        image: Path,
        bundle_path: Path,
        requirements: ImageRequirements,
    ) -> object: ...

    def restore(self, config: VMConfiguration, bundle_path: Path) -> object: ...

    def start(self, handle: object) -> None: ...

    def stop(self, handle: object) -> None: ...

    def pause(self, handle: object) -> None: ...

    def resume(self, handle: object) -> None: ...

    def attach_console(self, handle: object, read_fd: int, write_fd: int) -> None: ...

    def current_ip_address(self, handle: object) -> str | None: ...
