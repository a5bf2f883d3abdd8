"""Duplex byte-stream transport with buffered history and one observer."""

from __future__ import annotations

import codecs
import logging as py_logging
import queue
import threading
import weakref
from typing import Protocol

from huornvm.errors import NotConnected, TransportError
from huornvm.transport.buffer import DEFAULT_MAX_SIZE, DEFAULT_TRIM_SLACK, OutputBuffer

logger = py_logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
JOIN_TIMEOUT_SECONDS = 2.0

_END_OF_STREAM = object()


class TransportObserver(Protocol):
    def transport_received(self, transport: DuplexTransport, data: bytes) -> None: ...


class DuplexTransport:
    """Base class for the serial console and SSH transports.

    Subclasses provide ``_read``/``_write`` against the OS resource they own,
    ``_interrupt`` to make a blocked ``_read`` return end-of-stream, and
    ``_release`` to free the resources. The reader thread is the only writer
    of the buffer; observer callbacks run on a separate dispatcher thread so
    a slow observer never stalls reading.

    Each ``attach``/``detach`` starts a new observer generation. Queued chunks
    carry the generation they were read under and are dropped unseen once it
    is stale. The queue itself is unbounded: an observer that stops returning
    holds every chunk read while it stays attached.
    """

    def __init__(
        self,
        *,
        name: str,
        max_buffer_size: int = DEFAULT_MAX_SIZE,
        trim_slack: int = DEFAULT_TRIM_SLACK,
    ) -> None:
        self.name = name
        self._buffer = OutputBuffer(max_buffer_size, trim_slack)
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._lock = threading.RLock()
        self._output_changed = threading.Condition(self._lock)
        self._observer_ref: weakref.ReferenceType[TransportObserver] | None = None
        self._generation = 0
        # Held for the duration of each observer callback.
        self._delivery_lock = threading.RLock()
        self._pending: queue.SimpleQueue[object] = queue.SimpleQueue()
        self._reader: threading.Thread | None = None
        self._dispatcher: threading.Thread | None = None
        self._state_lock = threading.Lock()
        self._closing = False
        self._eof = threading.Event()

    def __enter__(self) -> DuplexTransport:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    # -- subclass hooks -------------------------------------------------

    def _read(self, size: int) -> bytes:
        raise NotImplementedError

    def _write(self, data: bytes) -> None:
        raise NotImplementedError

    def _interrupt(self) -> None:
        raise NotImplementedError

    def _release(self) -> None:
        raise NotImplementedError

    # -- public API -----------------------------------------------------

    @property
    def is_open(self) -> bool:
        return not self._closing

    @property
    def reached_eof(self) -> bool:
        return self._eof.is_set()

    @property
    def output(self) -> str:
        return self._buffer.snapshot()

    def clear_buffer(self) -> None:
        self._buffer.clear()

    def start(self) -> None:
        with self._state_lock:
            if self._closing:
                raise NotConnected(f"Transport {self.name} is closed.")
            if self._reader is not None:
                return
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop, name=f"{self.name}-dispatch", daemon=True
            )
            self._reader = threading.Thread(target=self._reader_loop, name=f"{self.name}-reader", daemon=True)
        self._dispatcher.start()
        self._reader.start()
        logger.debug("transport-start name=%s", self.name)

    def send(self, data: bytes | str) -> None:
        if self._closing:
            raise NotConnected(f"Transport {self.name} is closed.")
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        if not payload:
            return
        try:
            self._write(payload)
        except OSError as exc:
            raise TransportError(f"Failed to write to {self.name}: {exc}") from exc

    def attach(self, observer: TransportObserver) -> str:
        """Replace the observer and return the history it should render first.

        Waits for an in-flight callback to return; afterwards the observer
        receives exactly the chunks read after the returned snapshot.
        """
        with self._delivery_lock, self._lock:
            self._generation += 1
            self._observer_ref = weakref.ref(observer)
            return self._buffer.snapshot()

    def detach(self) -> None:
        with self._delivery_lock, self._lock:
            self._generation += 1
            self._observer_ref = None

    @property
    def observer(self) -> TransportObserver | None:
        ref = self._observer_ref
        return ref() if ref is not None else None

    def wait_for_output(self, marker: str, timeout: float) -> bool:
        """Block until ``marker`` shows up in the buffered output."""
        with self._output_changed:
            return self._output_changed.wait_for(
                lambda: marker in self._buffer.snapshot() or self._eof.is_set(),
                timeout=timeout,
            ) and marker in self._buffer.snapshot()

    def disconnect(self) -> None:
        with self._state_lock:
            if self._closing:
                return
            self._closing = True
        logger.info("transport-disconnect name=%s", self.name)
        try:
            self._interrupt()
        except OSError:
            logger.debug("transport-interrupt failed name=%s", self.name, exc_info=True)
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=JOIN_TIMEOUT_SECONDS)
            if reader.is_alive():
                logger.warning("transport-reader still running name=%s", self.name)
        self._release()

    stop = disconnect

    # -- internals ------------------------------------------------------

    def _reader_loop(self) -> None:
        try:
            while True:
                chunk = self._read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._ingest(chunk)
        except (OSError, ValueError) as exc:
            # Handles closed underneath a blocked read surface as OSError/ValueError.
            if not self._closing:
                logger.warning("transport-read failed name=%s error=%s", self.name, exc)
        finally:
            with self._output_changed:
                tail = self._decoder.decode(b"", final=True)
                if tail:
                    self._buffer.append(tail)
                self._eof.set()
                self._output_changed.notify_all()
            self._pending.put(_END_OF_STREAM)
            logger.debug("transport-eof name=%s", self.name)

    def _ingest(self, chunk: bytes) -> None:
        with self._output_changed:
            text = self._decoder.decode(chunk)
            if text:
                self._buffer.append(text)
            if self._observer_ref is not None:
                self._pending.put((self._generation, self._observer_ref, chunk))
            self._output_changed.notify_all()

    def _dispatch_loop(self) -> None:
        while True:
            item = self._pending.get()
            if item is _END_OF_STREAM:
                self._notify_closed()
                return
            generation, ref, chunk = item  # type: ignore[misc]
            with self._delivery_lock:
                with self._lock:
                    if generation != self._generation:
                        continue
                observer = ref()
                if observer is None:
                    continue
                try:
                    observer.transport_received(self, chunk)
                except Exception:
                    logger.exception("transport-observer failed name=%s", self.name)

    def _notify_closed(self) -> None:
        with self._delivery_lock:
            observer = self.observer
            closed = getattr(observer, "transport_closed", None)
            if closed is None:
                return
            try:
                closed(self)
            except Exception:
                logger.exception("transport-observer close failed name=%s", self.name)
