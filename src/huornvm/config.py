"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

DEFAULT_CONFIG_PATH = Path("~/.config/huornvm/config.toml").expanduser()
DEFAULT_STORAGE_ROOT = Path("~/.local/share/huornvm/VMs")
STORAGE_ROOT_ENV = "HUORNVM_STORAGE_ROOT"
DEFAULT_SSH_BINARY = "ssh"
DEFAULT_SSH_USERNAME = "admin"
DEFAULT_SSH_PORT = 22
DEFAULT_CONNECT_TIMEOUT = 10
DEFAULT_LIVENESS_WINDOW = 1.0
DEFAULT_BUFFER_SIZE = 100_000
DEFAULT_TRIM_SLACK = 10_000
DEFAULT_LOG_LEVEL = "INFO"

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "WARNING", "ERROR"}


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    storage_root: str = ""
    ssh_binary: str = DEFAULT_SSH_BINARY
    ssh_username: str = DEFAULT_SSH_USERNAME
    ssh_port: int = Field(default=DEFAULT_SSH_PORT, ge=1, le=65535)
    ssh_connect_timeout: int = Field(default=DEFAULT_CONNECT_TIMEOUT, ge=1, le=300)
    ssh_liveness_window: float = Field(default=DEFAULT_LIVENESS_WINDOW, gt=0, le=60)
    console_buffer_size: int = Field(default=DEFAULT_BUFFER_SIZE, ge=1)
    console_trim_slack: int = Field(default=DEFAULT_TRIM_SLACK, ge=0)
    log_level: str = DEFAULT_LOG_LEVEL

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return normalized

    def resolved_storage_root(self) -> Path:
        """Storage root from config, env override, or the per-user default."""
        env_root = os.getenv(STORAGE_ROOT_ENV, "").strip()
        if env_root:
            return Path(env_root).expanduser()
        if self.storage_root.strip():
            return Path(self.storage_root).expanduser()
        return DEFAULT_STORAGE_ROOT.expanduser()


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _positive_int(value: object, *, minimum: int = 1, maximum: int | None = None) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if value < minimum or (maximum is not None and value > maximum):
        return None
    return value


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    for key in ("storage_root", "ssh_binary", "ssh_username"):
        value = raw.get(key)
        if isinstance(value, str) and (value.strip() or key == "storage_root"):
            setattr(cfg, key, value.strip())

    ssh_port = _positive_int(raw.get("ssh_port"), maximum=65535)
    if ssh_port is not None:
        cfg.ssh_port = ssh_port

    connect_timeout = _positive_int(raw.get("ssh_connect_timeout"), maximum=300)
    if connect_timeout is not None:
        cfg.ssh_connect_timeout = connect_timeout

    liveness = raw.get("ssh_liveness_window")
    if isinstance(liveness, (int, float)) and not isinstance(liveness, bool) and 0 < liveness <= 60:
        cfg.ssh_liveness_window = float(liveness)

    buffer_size = _positive_int(raw.get("console_buffer_size"))
    if buffer_size is not None:
        cfg.console_buffer_size = buffer_size

    trim_slack = _positive_int(raw.get("console_trim_slack"), minimum=0)
    if trim_slack is not None:
        cfg.console_trim_slack = trim_slack

    log_level = raw.get("log_level")
    if isinstance(log_level, str) and log_level.strip().upper() in _VALID_LOG_LEVELS:
        cfg.log_level = log_level

    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return AppConfig()
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()
    return _sanitize(raw)


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    lines = [f"{name} = {_toml_scalar(value)}" for name, value in config.model_dump().items()]
    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
