from __future__ import annotations

import contextlib
import gzip
import logging
import os
import tarfile
import threading
from typing import BinaryIO, Optional

from .bridge import BridgeReader, BridgeWriter, open_bridge
from .constants import (
    COPY_BUFSIZE,
    DEFAULT_BEHAVIOR,
    DEFAULT_BRIDGE_CAPACITY,
    Behavior,
    StreamState,
)
from .errorcell import ErrorCell
from .errors import (
    FormatNotImplemented,
    IOFailure,
    NotInitialized,
    StreamPackError,
)
from .formats import behavior_name
from .hostcheck import check_host
from .pathutil import relative_name, root_prefix, walk_tree

logger = logging.getLogger(__name__)


class _CountingReader:
    """File wrapper that reports every byte read to the owning packer."""

    def __init__(self, fh: BinaryIO, packer: "AutoPacker"):
        self._fh = fh
        self._packer = packer

    def read(self, size: int = -1) -> bytes:
        data = self._fh.read(size)
        self._packer._bytes_done += len(data)
        return data


class AutoPacker:
    """Readable byte stream producing a tar (or tar.gz) archive of ``src_dir``.

    Archiving runs in a background thread started by the first :meth:`read`
    and connected to the caller through a bounded bridge. A second thread
    totals regular-file sizes for :meth:`size` as soon as the packer exists.
    Any worker failure is kept in an :class:`ErrorCell` and raised by the next
    :meth:`read`.
    """

    def __init__(
        self,
        src_dir: str,
        behavior: Behavior = Behavior.AUTO,
        *,
        bridge_capacity: int = DEFAULT_BRIDGE_CAPACITY,
    ):
        self.src_dir = os.path.abspath(src_dir) if src_dir else ""
        self.behavior = Behavior(behavior)
        self.bridge_capacity = bridge_capacity
        self.state = StreamState.UNCONFIGURED
        self._cell = ErrorCell()
        self._reader: Optional[BridgeReader] = None
        self._worker: Optional[threading.Thread] = None
        self._scanner: Optional[threading.Thread] = None
        # Each counter has exactly one writing thread
        self._size = 0
        self._bytes_done = 0
        try:
            check_host()
        except StreamPackError as exc:
            self._fail(exc)
            return
        if self.src_dir:
            self._scanner = threading.Thread(
                target=self._calc_directory_size, name="streampack-size-scan", daemon=True
            )
            self._scanner.start()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # progress
    def size(self) -> int:
        """Total bytes of regular files under the source tree seen so far."""
        return self._size

    def bytes_complete(self) -> int:
        """Bytes read out of regular files by the archival pass."""
        return self._bytes_done

    def wait_for_size(self, timeout: Optional[float] = None) -> bool:
        """Block until the size scan finishes; returns False on timeout."""
        if self._scanner is None:
            return True
        self._scanner.join(timeout)
        return not self._scanner.is_alive()

    def error(self) -> Optional[BaseException]:
        return self._cell.error()

    # stream interface
    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        if not self.src_dir:
            raise NotInitialized("AutoPacker must be constructed with a source directory")
        err = self._cell.error()
        if err is not None:
            if self._reader is not None:
                self._reader.close()
            # Stored errors are raised on every call; don't let frames pile up
            raise err.with_traceback(None)
        if self._reader is None:
            self._configure()
        try:
            data = self._reader.read(size)
        except StreamPackError:
            err = self._cell.error()
            if err is not None:
                raise err.with_traceback(None)
            raise
        # The worker may have failed after handing over these bytes
        err = self._cell.error()
        if err is not None:
            raise err.with_traceback(None)
        return data

    def readinto(self, b) -> int:
        view = memoryview(b).cast("B")
        data = self.read(len(view))
        view[: len(data)] = data
        return len(data)

    def close(self) -> None:
        """Tear down the stream; a still-running worker fails on its next write."""
        if self._reader is not None:
            self._reader.close()
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join()

    # internals
    def _fail(self, exc: BaseException) -> None:
        self._cell.store_error(exc)
        self.state = StreamState.FAILED

    def _configure(self) -> None:
        if self.behavior == Behavior.AUTO:
            self.behavior = DEFAULT_BEHAVIOR
        if self.behavior in (Behavior.TAR_XZ, Behavior.ZIP):
            exc = FormatNotImplemented(f"{behavior_name(self.behavior)} packing has not been implemented")
            self._fail(exc)
            raise exc
        reader, writer = open_bridge(self.bridge_capacity)
        self._reader = reader
        self._worker = threading.Thread(
            target=self._pack, args=(writer,), name="streampack-pack", daemon=True
        )
        self.state = StreamState.CONFIGURED
        logger.debug("Starting %s packer for %s", behavior_name(self.behavior), self.src_dir)
        self._worker.start()

    def _calc_directory_size(self) -> None:
        def _on_error(exc: OSError) -> None:
            logger.warning("Error when walking source directory to calculate size: %s", exc)

        # Later names of a hard-linked inode are archived as link entries
        # with no body, so count each inode once
        seen_inodes = set()
        for entry in walk_tree(self.src_dir, onerror=_on_error):
            try:
                if not entry.is_file(follow_symlinks=False):
                    continue
                st = entry.stat(follow_symlinks=False)
                if st.st_nlink > 1:
                    inode = (st.st_dev, st.st_ino)
                    if inode in seen_inodes:
                        continue
                    seen_inodes.add(inode)
                self._size += st.st_size
            except OSError as exc:
                logger.warning("Error when stat'ing file %s: %s", entry.path, exc)

    def _pack(self, writer: BridgeWriter) -> None:
        gz: Optional[gzip.GzipFile] = None
        tar: Optional[tarfile.TarFile] = None
        try:
            if self._scanner is not None:
                self._scanner.join()
            sink: BinaryIO = writer
            if self.behavior == Behavior.TAR_GZ:
                gz = gzip.GzipFile(fileobj=writer, mode="wb")
                sink = gz
            tar = tarfile.open(fileobj=sink, mode="w|", format=tarfile.PAX_FORMAT, bufsize=COPY_BUFSIZE)
            prefix = root_prefix(self.src_dir)
            for entry in walk_tree(self.src_dir):
                self._add_entry(tar, prefix, entry)
            tar.close()
            if gz is not None:
                gz.close()
        except Exception as exc:
            err = exc if isinstance(exc, StreamPackError) else IOFailure(f"packing {self.src_dir}", exc)
            self._fail(err)
            writer.close(err)
            # The stream already ends in the error; closing only releases codec state
            if tar is not None:
                with contextlib.suppress(StreamPackError):
                    tar.close()
            if gz is not None:
                with contextlib.suppress(StreamPackError):
                    gz.close()
            return
        writer.close()

    def _add_entry(self, tar: tarfile.TarFile, prefix: str, entry: os.DirEntry) -> None:
        name = relative_name(prefix, entry.path)
        info = tar.gettarinfo(entry.path, arcname=name)
        if info is None:
            logger.debug("Skipping unsupported file type at %s", entry.path)
            return
        if info.isreg():
            with open(entry.path, "rb") as fh:
                tar.addfile(info, _CountingReader(fh, self))
        else:
            tar.addfile(info)
