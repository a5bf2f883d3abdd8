"""VM bundle storage and listing."""

from .catalog import VMCatalog
from .store import BUNDLE_SUFFIX, REQUIRED_FILES, BundleStore

__all__ = [
    "BUNDLE_SUFFIX",
    "BundleStore",
    "REQUIRED_FILES",
    "VMCatalog",
]
