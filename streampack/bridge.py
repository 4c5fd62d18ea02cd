from __future__ import annotations

import threading
from typing import Optional, Tuple

from .constants import DEFAULT_BRIDGE_CAPACITY
from .errors import ClosedBridge


class _Bridge:
    """Bounded byte buffer shared by one reader and one writer thread.

    ``_werr`` is set when the writer closes (``None`` payload means clean
    EOF), ``_rerr`` when the reader closes. Both sides wait on one condition.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("Bridge capacity must be positive")
        self.capacity = capacity
        self._buf = bytearray()
        self._cond = threading.Condition()
        self._writer_closed = False
        self._werr: Optional[BaseException] = None
        self._reader_closed = False
        self._rerr: Optional[BaseException] = None

    def read(self, size: int) -> bytes:
        with self._cond:
            while not self._buf and not self._writer_closed and not self._reader_closed:
                self._cond.wait()
            if self._reader_closed:
                raise ClosedBridge("read on closed bridge")
            if self._buf:
                n = len(self._buf) if size < 0 else min(size, len(self._buf))
                out = bytes(self._buf[:n])
                del self._buf[:n]
                self._cond.notify_all()
                return out
            if self._werr is not None:
                raise self._werr
            return b""

    def write(self, data) -> int:
        view = memoryview(data).cast("B")
        total = len(view)
        pos = 0
        with self._cond:
            while True:
                if self._writer_closed:
                    raise ClosedBridge("write on closed bridge")
                if self._reader_closed:
                    raise self._rerr
                if pos >= total:
                    return total
                room = self.capacity - len(self._buf)
                if room <= 0:
                    self._cond.wait()
                    continue
                chunk = view[pos:pos + room]
                self._buf += chunk
                pos += len(chunk)
                self._cond.notify_all()

    def close_reader(self, exc: Optional[BaseException]) -> None:
        with self._cond:
            if self._reader_closed:
                return
            self._reader_closed = True
            self._rerr = exc if exc is not None else ClosedBridge("read end of bridge closed")
            self._buf.clear()
            self._cond.notify_all()

    def close_writer(self, exc: Optional[BaseException]) -> None:
        with self._cond:
            if self._writer_closed:
                return
            self._writer_closed = True
            self._werr = exc
            self._cond.notify_all()


class BridgeReader:
    """Read end of an in-process bridge; a minimal binary file object."""

    def __init__(self, bridge: _Bridge):
        self._bridge = bridge
        self.closed = False

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        """Block until bytes are available; ``b""`` means the writer closed cleanly.

        ``size < 0`` reads until end of stream.
        """
        if size is None or size < 0:
            parts = []
            while True:
                chunk = self._bridge.read(-1)
                if not chunk:
                    return b"".join(parts)
                parts.append(chunk)
        if size == 0:
            return b""
        return self._bridge.read(size)

    def readinto(self, b) -> int:
        view = memoryview(b).cast("B")
        data = self.read(len(view))
        view[: len(data)] = data
        return len(data)

    def close(self, exc: Optional[BaseException] = None) -> None:
        """Close the read end; the writer's next write raises ``exc``."""
        self.closed = True
        self._bridge.close_reader(exc)


class BridgeWriter:
    """Write end of an in-process bridge."""

    def __init__(self, bridge: _Bridge):
        self._bridge = bridge
        self.closed = False

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        return self._bridge.write(data)

    def flush(self) -> None:
        pass

    def close(self, exc: Optional[BaseException] = None) -> None:
        """Close the write end; the reader drains, then sees EOF or ``exc``."""
        self.closed = True
        self._bridge.close_writer(exc)


def open_bridge(capacity: int = DEFAULT_BRIDGE_CAPACITY) -> Tuple[BridgeReader, BridgeWriter]:
    bridge = _Bridge(capacity)
    return BridgeReader(bridge), BridgeWriter(bridge)
