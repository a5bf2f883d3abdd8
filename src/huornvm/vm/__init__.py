"""VM builder, engine contract and live handles."""

from .builder import VMBuilder, VMDraft, create_disk_image
from .engine import Engine, ImageRequirements
from .machine import VirtualMachine

__all__ = [
    "create_disk_image",
    "Engine",
    "ImageRequirements",
    "VirtualMachine",
    "VMBuilder",
    "VMDraft",
]
