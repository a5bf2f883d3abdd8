"""Fluent VM construction and provisioning."""

from __future__ import annotations

import logging as py_logging
import os
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from huornvm.bundle.store import CONFIG_FILE, DISK_IMAGE_FILE, BundleStore
from huornvm.errors import (
    ConfigurationInvalid,
    DiskCreationFailed,
    ExitCode,
    HuornVMError,
    ProvisioningError,
    VirtualizationNotSupported,
)
from huornvm.models import (
    DEFAULT_CPU_CORES,
    DEFAULT_DISK_SIZE_BYTES,
    DEFAULT_DISPLAY_HEIGHT,
    DEFAULT_DISPLAY_PPI,
    DEFAULT_DISPLAY_WIDTH,
    DEFAULT_MEMORY_BYTES,
    DEFAULT_NAME,
    GIB,
    SharedFolderConfig,
    VMConfiguration,
    host_cpu_count,
)
from huornvm.vm.engine import Engine, ImageRequirements
from huornvm.vm.machine import VirtualMachine

logger = py_logging.getLogger(__name__)


@dataclass
class VMDraft:
    name: str = DEFAULT_NAME
    cpu_cores: int = field(default_factory=lambda: min(DEFAULT_CPU_CORES, host_cpu_count()))
    memory_bytes: int = DEFAULT_MEMORY_BYTES
    disk_size_bytes: int = DEFAULT_DISK_SIZE_BYTES
    display_width: int = DEFAULT_DISPLAY_WIDTH
    display_height: int = DEFAULT_DISPLAY_HEIGHT
    display_ppi: int = DEFAULT_DISPLAY_PPI
    shared_folders: list[SharedFolderConfig] = field(default_factory=list)


def create_disk_image(path: str | Path, size: int) -> Path:
    """Allocate a sparse disk image of exactly ``size`` bytes.

    An existing file at ``path`` is never overwritten.
    """
    target = Path(path)
    try:
        fd = os.open(target, os.O_RDWR | os.O_CREAT | os.O_EXCL, 0o600)
    except OSError as exc:
        raise DiskCreationFailed(f"Failed to create disk file at {target}: {exc.strerror or exc}") from exc
    try:
        os.ftruncate(fd, size)
    except (OSError, ValueError) as exc:
        with suppress(OSError):
            target.unlink()
        raise DiskCreationFailed(f"Failed to set disk size to {size} bytes: {exc}") from exc
    finally:
        os.close(fd)
    return target


def _check_minimums(config: VMConfiguration, requirements: ImageRequirements) -> None:
    if config.cpu_cores < requirements.min_cpu:
        raise ConfigurationInvalid(f"Guest OS requires at least {requirements.min_cpu} CPU cores")
    if config.memory_bytes < requirements.min_memory:
        raise ConfigurationInvalid(
            f"Guest OS requires at least {requirements.min_memory // GIB} GB of memory"
        )


class VMBuilder:
    """Accumulates a VM draft; nothing is validated or touched until ``build``."""

    def __init__(
        self,
        engine: Engine,
        *,
        storage_root: str | Path,
        store: BundleStore | None = None,
    ) -> None:
        self._engine = engine
        self._store = store or BundleStore(storage_root)
        self._image: Path | None = None
        self._bundle_path: Path | None = None
        self.draft = VMDraft()

    def from_image(self, path: str | Path) -> VMBuilder:
        self._image = Path(path)
        return self

    def with_bundle(self, path: str | Path) -> VMBuilder:
        self._bundle_path = Path(path)
        return self

    def with_name(self, name: str) -> VMBuilder:
        self.draft.name = name
        return self

    def with_cpus(self, count: int) -> VMBuilder:
        self.draft.cpu_cores = min(count, host_cpu_count())
        return self

    def with_memory(self, size_bytes: int) -> VMBuilder:
        self.draft.memory_bytes = size_bytes
        return self

    def with_disk_size(self, size_bytes: int) -> VMBuilder:
        self.draft.disk_size_bytes = size_bytes
        return self

    def with_display(self, width: int, height: int, ppi: int = DEFAULT_DISPLAY_PPI) -> VMBuilder:
        self.draft.display_width = width
        self.draft.display_height = height
        self.draft.display_ppi = ppi
        return self

    def with_shared_folder(self, host_path: str | Path, guest_tag: str, read_only: bool = False) -> VMBuilder:
        self.draft.shared_folders.append(
            SharedFolderConfig(host_path=Path(host_path), guest_tag=guest_tag, read_only=read_only)
        )
        return self

    def configuration(self) -> VMConfiguration:
        try:
            return VMConfiguration(
                name=self.draft.name,
                cpu_cores=self.draft.cpu_cores,
                memory_bytes=self.draft.memory_bytes,
                disk_size_bytes=self.draft.disk_size_bytes,
                display_width=self.draft.display_width,
                display_height=self.draft.display_height,
                display_ppi=self.draft.display_ppi,
                shared_folders=tuple(self.draft.shared_folders),
            )
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ())) or "configuration"
            raise ConfigurationInvalid(f"{location}: {first.get('msg', 'invalid value')}") from exc

    def build(self) -> VirtualMachine:
        if not self._engine.is_supported():
            raise VirtualizationNotSupported()
        if self._image is None:
            raise ConfigurationInvalid("No provisioning image provided. Use from_image() to specify one.")
        config = self.configuration()
        bundle = self._bundle_path or self._store.default_bundle_path(config.name)
        if (bundle / CONFIG_FILE).exists():
            raise ConfigurationInvalid(f"A VM bundle already exists at {bundle}")
        created = not bundle.exists()
        written: list[Path] = []
        try:
            bundle.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ProvisioningError(
                f"Cannot create bundle directory {bundle}: {exc}",
                code=ExitCode.BUNDLE_ERROR,
            ) from exc
        logger.info("vm-build start name=%s bundle=%s image=%s", config.name, bundle, self._image)

        try:
            requirements = self._engine.image_requirements(self._image)
            _check_minimums(config, requirements)
            written.append(create_disk_image(bundle / DISK_IMAGE_FILE, config.disk_size_bytes))
            handle = self._engine.provision(config, self._image, bundle, requirements)
            written.append(bundle / CONFIG_FILE)
            self._store.save(config, bundle)
            self._store.load(bundle)
        except BaseException as exc:
            self._rollback(bundle, created=created, written=written)
            if isinstance(exc, HuornVMError) or not isinstance(exc, Exception):
                raise
            raise ProvisioningError(f"Provisioning failed for {config.name}: {exc}") from exc

        logger.info("vm-build complete name=%s bundle=%s", config.name, bundle)
        return VirtualMachine(bundle, config, engine=self._engine, engine_handle=handle)

    def _rollback(self, bundle: Path, *, created: bool, written: list[Path]) -> None:
        if created:
            try:
                self._store.discard(bundle)
            except OSError:
                logger.warning("vm-build rollback could not remove bundle=%s", bundle, exc_info=True)
            else:
                logger.warning("vm-build rollback removed bundle=%s", bundle)
                return
        # Directory stays: drop only what this build wrote so loaders reject it.
        for path in reversed(written):
            with suppress(OSError):
                path.unlink()
        logger.warning("vm-build rollback invalidated bundle=%s", bundle)
