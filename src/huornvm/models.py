"""VM configuration, listing and state models."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

GIB = 1024 * 1024 * 1024
DEFAULT_NAME = "macOS VM"
DEFAULT_CPU_CORES = 4
DEFAULT_MEMORY_BYTES = 8 * GIB
DEFAULT_DISK_SIZE_BYTES = 64 * GIB
DEFAULT_DISPLAY_WIDTH = 1920
DEFAULT_DISPLAY_HEIGHT = 1080
DEFAULT_DISPLAY_PPI = 144


def host_cpu_count() -> int:
    return os.cpu_count() or 1


class VMState(str, Enum):
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    PAUSING = "pausing"
    PAUSED = "paused"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class SharedFolderConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host_path: Path = Field(alias="hostPath")
    guest_tag: str = Field(alias="guestTag", min_length=1)
    read_only: bool = Field(default=False, alias="readOnly")


class VMConfiguration(BaseModel):
    """Persisted hardware description of one VM.

    Field aliases are the camelCase keys of the bundle's ``config.json``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(alias="name")
    cpu_cores: int = Field(alias="cpuCores", gt=0)
    memory_bytes: int = Field(alias="memoryBytes", gt=0, lt=2**64)
    disk_size_bytes: int = Field(alias="diskSizeBytes", gt=0, lt=2**64)
    display_width: int = Field(default=DEFAULT_DISPLAY_WIDTH, alias="displayWidth", gt=0)
    display_height: int = Field(default=DEFAULT_DISPLAY_HEIGHT, alias="displayHeight", gt=0)
    display_ppi: int = Field(default=DEFAULT_DISPLAY_PPI, alias="displayPPI", gt=0)
    shared_folders: tuple[SharedFolderConfig, ...] = Field(default=(), alias="sharedFolders")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("VM name cannot be empty")
        if "/" in value or "\x00" in value or value in {".", ".."}:
            raise ValueError(f"VM name cannot be used as a bundle name: {value!r}")
        return value

    @field_validator("cpu_cores")
    @classmethod
    def _validate_cpu_cores(cls, value: int) -> int:
        available = host_cpu_count()
        if value > available:
            raise ValueError(f"cpu_cores {value} exceeds host logical cores ({available})")
        return value

    @model_validator(mode="after")
    def _validate_unique_tags(self) -> VMConfiguration:
        seen: set[str] = set()
        for folder in self.shared_folders:
            if folder.guest_tag in seen:
                raise ValueError(f"Duplicate shared folder tag: {folder.guest_tag}")
            seen.add(folder.guest_tag)
        return self

    def to_document(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


def default_configuration() -> VMConfiguration:
    return VMConfiguration(
        name=DEFAULT_NAME,
        cpu_cores=min(DEFAULT_CPU_CORES, host_cpu_count()),
        memory_bytes=DEFAULT_MEMORY_BYTES,
        disk_size_bytes=DEFAULT_DISK_SIZE_BYTES,
    )


def _format_gib(value: int) -> str:
    return f"{value / GIB:.1f} GB"


@dataclass(frozen=True)
class VMInfo:
    bundle_path: Path
    name: str
    cpu_cores: int
    memory_bytes: int
    disk_size_bytes: int
    last_modified: datetime

    @property
    def id(self) -> str:
        return str(self.bundle_path)

    @property
    def memory_formatted(self) -> str:
        return _format_gib(self.memory_bytes)

    @property
    def disk_size_formatted(self) -> str:
        return _format_gib(self.disk_size_bytes)
