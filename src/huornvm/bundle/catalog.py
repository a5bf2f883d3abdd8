"""Best-effort listing of VM bundles under a storage root."""

from __future__ import annotations

import logging as py_logging
from datetime import datetime, timezone
from pathlib import Path

from huornvm.bundle.store import DISK_IMAGE_FILE, BundleStore
from huornvm.errors import BundleError, BundleNotFound
from huornvm.models import VMInfo

logger = py_logging.getLogger(__name__)


class VMCatalog:
    def __init__(self, storage_root: str | Path, *, store: BundleStore | None = None) -> None:
        self.storage_root = Path(storage_root).expanduser()
        self._store = store or BundleStore(self.storage_root)

    def info(self, bundle_path: str | Path) -> VMInfo:
        """Build listing metadata without checking the full artifact set."""
        bundle = Path(bundle_path)
        if not bundle.is_dir():
            raise BundleNotFound(bundle)
        config = self._store.read_config(bundle)

        # The disk image is sparse and may have grown past its nominal size.
        try:
            disk_size = (bundle / DISK_IMAGE_FILE).stat().st_size
        except FileNotFoundError:
            disk_size = 0
        try:
            mtime = bundle.stat().st_mtime
        except OSError as exc:
            raise BundleError(f"Cannot stat bundle {bundle}: {exc}") from exc

        return VMInfo(
            bundle_path=bundle,
            name=config.name,
            cpu_cores=config.cpu_cores,
            memory_bytes=config.memory_bytes,
            disk_size_bytes=disk_size,
            last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc),
        )

    def list_all(self) -> list[VMInfo]:
        if not self.storage_root.is_dir():
            return []
        try:
            entries = list(self.storage_root.iterdir())
        except OSError:
            logger.warning("catalog-list unreadable root=%s", self.storage_root, exc_info=True)
            return []

        infos: list[VMInfo] = []
        for entry in entries:
            if not self._store.is_bundle(entry) or not entry.is_dir():
                continue
            try:
                infos.append(self.info(entry))
            except (BundleError, OSError) as exc:
                logger.debug("catalog-skip path=%s reason=%s", entry, exc)
        infos.sort(key=lambda item: str(item.bundle_path))
        infos.sort(key=lambda item: item.last_modified, reverse=True)
        return infos
