"""On-disk VM bundle persistence."""

from __future__ import annotations

import json
import logging as py_logging
import os
import shutil
import tempfile
from contextlib import suppress
from pathlib import Path

from pydantic import ValidationError

from huornvm.errors import BundleInvalid, BundleNotFound
from huornvm.models import VMConfiguration

logger = py_logging.getLogger(__name__)

BUNDLE_SUFFIX = ".huornvm"
CONFIG_FILE = "config.json"
HARDWARE_MODEL_FILE = "hardware_model.bin"
MACHINE_ID_FILE = "machine_id.bin"
AUXILIARY_STORAGE_FILE = "auxiliary.img"
DISK_IMAGE_FILE = "disk.img"
REQUIRED_FILES = (HARDWARE_MODEL_FILE, MACHINE_ID_FILE, AUXILIARY_STORAGE_FILE, DISK_IMAGE_FILE)


class BundleStore:
    def __init__(self, storage_root: str | Path) -> None:
        self.storage_root = Path(storage_root).expanduser()

    @staticmethod
    def is_bundle(path: str | Path) -> bool:
        return Path(path).suffix == BUNDLE_SUFFIX

    def default_bundle_path(self, name: str) -> Path:
        return self.storage_root / f"{name}{BUNDLE_SUFFIX}"

    def save(self, config: VMConfiguration, bundle_path: str | Path) -> Path:
        bundle = Path(bundle_path)
        bundle.mkdir(parents=True, exist_ok=True)
        target = bundle / CONFIG_FILE
        payload = json.dumps(config.to_document(), indent=2, ensure_ascii=False) + "\n"

        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=bundle,
            prefix=f".{CONFIG_FILE}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            except BaseException:
                tmp.close()
                with suppress(OSError):
                    tmp_path.unlink()
                raise
        try:
            os.replace(tmp_path, target)
        except OSError:
            with suppress(OSError):
                tmp_path.unlink()
            raise
        logger.info("bundle-save name=%s path=%s", config.name, bundle)
        return target

    def read_config(self, bundle_path: str | Path) -> VMConfiguration:
        config_path = Path(bundle_path) / CONFIG_FILE
        if not config_path.is_file():
            raise BundleInvalid(f"Missing {CONFIG_FILE}", missing=[CONFIG_FILE])
        try:
            raw = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise BundleInvalid(f"Unreadable {CONFIG_FILE}: {exc}") from exc
        if not isinstance(raw, dict):
            raise BundleInvalid(f"{CONFIG_FILE} must contain a JSON object")
        try:
            return VMConfiguration.model_validate(raw)
        except ValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ())) or "config"
            raise BundleInvalid(f"{CONFIG_FILE} field {location}: {first.get('msg', 'invalid')}") from exc

    @staticmethod
    def missing_files(bundle_path: str | Path) -> list[str]:
        bundle = Path(bundle_path)
        return [name for name in REQUIRED_FILES if not (bundle / name).is_file()]

    def load(self, bundle_path: str | Path) -> VMConfiguration:
        bundle = Path(bundle_path)
        if not bundle.is_dir():
            raise BundleNotFound(bundle)
        config = self.read_config(bundle)
        missing = self.missing_files(bundle)
        if missing:
            raise BundleInvalid(
                "Missing required file: " + ", ".join(missing),
                missing=missing,
            )
        logger.debug("bundle-load name=%s path=%s", config.name, bundle)
        return config

    def discard(self, bundle_path: str | Path) -> None:
        bundle = Path(bundle_path)
        if bundle.exists():
            shutil.rmtree(bundle)
            logger.info("bundle-discard path=%s", bundle)
