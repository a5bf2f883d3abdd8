"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import logging as py_logging
import sys
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TextIO

from .bundle import VMCatalog
from .config import AppConfig, load_config
from .errors import ExitCode, HuornVMError, user_facing_error
from .logging import configure_logging, default_log_path
from .models import VMInfo
from .transport import DuplexTransport, SSHTransport, connect_ssh

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")

SSHConnector = Callable[..., SSHTransport]


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def _port_type(value: str) -> int:
    try:
        port = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("--port must be an integer") from exc
    if port < 1 or port > 65535:
        raise argparse.ArgumentTypeError("--port must be between 1 and 65535")
    return port


def _add_ssh_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("host")
    parser.add_argument("--port", type=_port_type, default=None)
    parser.add_argument("--user", default=None)
    parser.add_argument("--ready-marker", default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="huornvm")
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument("--storage-root", type=Path, default=None)
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="List VM bundles, most recently modified first")

    show = commands.add_parser("show", help="Show one VM bundle")
    show.add_argument("bundle", type=Path)

    execute = commands.add_parser("exec", help="Run one command over SSH")
    _add_ssh_arguments(execute)
    execute.add_argument("remote_command")
    execute.add_argument("--timeout", type=float, default=None)

    shell = commands.add_parser("ssh", help="Bridge stdin/stdout to an interactive SSH session")
    _add_ssh_arguments(shell)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def _format_info_row(info: VMInfo) -> str:
    return "\t".join(
        [
            info.name,
            f"{info.cpu_cores} CPU",
            info.memory_formatted,
            info.disk_size_formatted,
            info.last_modified.isoformat(timespec="seconds"),
            str(info.bundle_path),
        ]
    )


def _storage_root(namespace: argparse.Namespace, config: AppConfig) -> Path:
    if namespace.storage_root is not None:
        return namespace.storage_root.expanduser()
    return config.resolved_storage_root()


class _StreamObserver:
    def __init__(self, stream: TextIO) -> None:
        self.stream = stream
        self.closed = threading.Event()

    def transport_received(self, transport: DuplexTransport, data: bytes) -> None:
        self.stream.write(data.decode("utf-8", errors="replace"))
        self.stream.flush()

    def transport_closed(self, transport: DuplexTransport) -> None:
        self.closed.set()


def _ssh_options(namespace: argparse.Namespace, config: AppConfig) -> dict[str, object]:
    return {
        "port": namespace.port or config.ssh_port,
        "username": namespace.user or config.ssh_username,
        "ready_marker": namespace.ready_marker,
        "ssh_binary": config.ssh_binary,
        "connect_timeout": config.ssh_connect_timeout,
        "liveness_window": config.ssh_liveness_window,
        "max_buffer_size": config.console_buffer_size,
        "trim_slack": config.console_trim_slack,
    }


def run_command(
    namespace: argparse.Namespace,
    config: AppConfig,
    *,
    stdin: TextIO,
    stdout: TextIO,
    connector: SSHConnector = connect_ssh,
) -> int:
    if namespace.command == "list":
        for info in VMCatalog(_storage_root(namespace, config)).list_all():
            print(_format_info_row(info), file=stdout)
        return int(ExitCode.SUCCESS)

    if namespace.command == "show":
        info = VMCatalog(namespace.bundle.parent).info(namespace.bundle)
        print(_format_info_row(info), file=stdout)
        return int(ExitCode.SUCCESS)

    transport = connector(namespace.host, **_ssh_options(namespace, config))
    with transport:
        if namespace.command == "exec":
            output = transport.execute(namespace.remote_command, timeout=namespace.timeout)
            stdout.write(output)
            return int(ExitCode.SUCCESS)

        observer = _StreamObserver(stdout)
        stdout.write(transport.attach(observer))
        for line in stdin:
            if not transport.is_connected:
                break
            transport.send(line)
        observer.closed.wait(timeout=1.0)
        transport.detach()
    return int(ExitCode.SUCCESS)


def main(
    argv: Sequence[str] | None = None,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    connector: SSHConnector = connect_ssh,
) -> int:
    log_path = default_log_path()
    logger = configure_logging("WARN", log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    config = load_config(namespace.config)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level or config.log_level, log_file=log_path)

    try:
        logger.debug("Starting command %s", namespace.command)
        return run_command(
            namespace,
            config,
            stdin=stdin or sys.stdin,
            stdout=stdout or sys.stdout,
            connector=connector,
        )
    except HuornVMError as exc:
        logger.error(
            "Handled HuornVMError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        print(user_facing_error("Unexpected runtime failure", hint=f"Inspect logs: {log_path}"), file=sys.stderr)
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
