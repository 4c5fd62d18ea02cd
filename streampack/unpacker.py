from __future__ import annotations

import contextlib
import gzip
import logging
import os
import shutil
import tarfile
import threading
from typing import Optional

from .bridge import BridgeReader, BridgeWriter, open_bridge
from .constants import COPY_BUFSIZE, DEFAULT_BRIDGE_CAPACITY, Behavior, StreamState
from .errorcell import ErrorCell
from .errors import (
    FormatNotImplemented,
    IncompleteStream,
    IOFailure,
    NotInitialized,
    StreamPackError,
)
from .formats import behavior_name, detect_behavior
from .hostcheck import check_host
from .pathutil import guard_path, guard_real_parent

logger = logging.getLogger(__name__)

_O_NOFOLLOW = getattr(os, "O_NOFOLLOW", 0)


class AutoUnpacker:
    """Writable byte sink that unpacks a tar (or tar.gz) stream into ``dest_dir``.

    With ``Behavior.AUTO`` the first written bytes are buffered until the
    container format can be identified; the buffered prefix is then replayed
    into a background unpacking thread and later writes stream straight to it.
    Every entry is resolved against ``dest_dir`` and refused if it escapes.
    """

    def __init__(
        self,
        dest_dir: str,
        behavior: Behavior = Behavior.AUTO,
        *,
        bridge_capacity: int = DEFAULT_BRIDGE_CAPACITY,
    ):
        self.dest_dir = os.path.abspath(dest_dir) if dest_dir else ""
        self.behavior = Behavior(behavior)
        # AUTO until detection succeeds, unless the caller named the format
        self.detected_type = self.behavior
        self.bridge_capacity = bridge_capacity
        self.state = StreamState.UNCONFIGURED
        self._cell = ErrorCell()
        self._buffer = bytearray()
        self._writer: Optional[BridgeWriter] = None
        self._worker: Optional[threading.Thread] = None
        self._closed = False
        try:
            check_host()
        except StreamPackError as exc:
            self._fail(exc)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        else:
            self._abort()

    def error(self) -> Optional[BaseException]:
        return self._cell.error()

    @property
    def closed(self) -> bool:
        return self._closed

    # stream interface
    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if not self.dest_dir:
            raise NotInitialized("AutoUnpacker must be constructed with a destination directory")
        err = self._cell.error()
        if err is not None:
            if self._writer is not None:
                self._writer.close()
            raise err.with_traceback(None)

        if self.detected_type == Behavior.AUTO:
            self.state = StreamState.DETECTING
            self._buffer += data
            try:
                self.detected_type = detect_behavior(self._buffer)
            except StreamPackError as exc:
                self._fail(exc)
                raise
            if self.detected_type == Behavior.AUTO:
                return len(data)
            logger.debug("Detected %s stream", behavior_name(self.detected_type))
            # The buffer already holds these bytes; configuring replays them
            self._configure()
            return len(data)
        if self._writer is None:
            self._configure()
        return self._forward(data)

    def close(self) -> None:
        """Finish the stream and wait for unpacking to complete.

        Raises the first error seen by this unpacker, including closing it
        before any format was detected.
        """
        if not self._closed:
            self._closed = True
            if self._cell.error() is None:
                if self.detected_type == Behavior.AUTO and self._buffer:
                    self._fail(IncompleteStream(
                        "AutoUnpacker was closed prior to detecting any file type; "
                        f"{len(self._buffer)} bytes were buffered"
                    ))
                elif self._writer is None:
                    self._fail(IncompleteStream("AutoUnpacker was closed prior to any bytes written"))
            if self._writer is not None:
                self._writer.close()
            self._join()
        err = self._cell.error()
        if err is not None:
            raise err.with_traceback(None)

    # internals
    def _fail(self, exc: BaseException) -> None:
        self._cell.store_error(exc)
        self.state = StreamState.FAILED

    def _abort(self) -> None:
        self._closed = True
        if self._writer is not None:
            self._writer.close(IncompleteStream("AutoUnpacker was aborted"))
        self._join()

    def _join(self) -> None:
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join()

    def _configure(self) -> None:
        if self.detected_type in (Behavior.TAR_XZ, Behavior.ZIP):
            exc = FormatNotImplemented(
                f"{behavior_name(self.detected_type)} unpacking has not been implemented"
            )
            self._fail(exc)
            raise exc
        reader, writer = open_bridge(self.bridge_capacity)
        self._writer = writer
        self._worker = threading.Thread(
            target=self._unpack, args=(reader,), name="streampack-unpack", daemon=True
        )
        self.state = StreamState.CONFIGURED
        self._worker.start()
        if self._buffer:
            pending = bytes(self._buffer)
            self._buffer.clear()
            self._forward(pending)

    def _forward(self, data) -> int:
        try:
            self._writer.write(data)
        except EOFError:
            # Archive already complete; the rest is trailing padding
            return len(data)
        except StreamPackError:
            err = self._cell.error()
            if err is not None:
                raise err.with_traceback(None)
            raise
        err = self._cell.error()
        if err is not None:
            raise err.with_traceback(None)
        return len(data)

    def _unpack(self, reader: BridgeReader) -> None:
        logger.debug("Beginning unpacker of type %s into %s", behavior_name(self.detected_type), self.dest_dir)
        try:
            with contextlib.ExitStack() as stack:
                src = reader
                if self.detected_type == Behavior.TAR_GZ:
                    src = stack.enter_context(gzip.GzipFile(fileobj=reader, mode="rb"))
                tar = stack.enter_context(tarfile.open(fileobj=src, mode="r|", bufsize=COPY_BUFSIZE))
                for info in tar:
                    self._extract(tar, info)
        except Exception as exc:
            err = exc if isinstance(exc, StreamPackError) else IOFailure("reading archive stream", exc)
            self._fail(err)
            reader.close(err)
            return
        reader.close(EOFError("archive stream already complete"))

    def _extract(self, tar: tarfile.TarFile, info: tarfile.TarInfo) -> None:
        dest = guard_path(self.dest_dir, info.name)
        if dest != self.dest_dir:
            guard_real_parent(self.dest_dir, dest)
        mode = info.mode & 0o777
        if info.isreg():
            self._write_reg_file(tar, info, dest, mode)
        elif info.islnk():
            target = guard_path(self.dest_dir, info.linkname)
            guard_real_parent(self.dest_dir, target)
            try:
                os.makedirs(os.path.dirname(dest), exist_ok=True)
                os.link(target, dest, follow_symlinks=False)
            except OSError as exc:
                raise IOFailure(f"Failure when unpacking hard link to {dest}", exc) from exc
        elif info.issym():
            try:
                os.makedirs(os.path.dirname(dest), exist_ok=True)
                os.symlink(info.linkname, dest)
            except OSError as exc:
                raise IOFailure(f"Failure when creating symlink at {dest}", exc) from exc
        elif info.isdir():
            try:
                os.makedirs(dest, mode, exist_ok=True)
            except OSError as exc:
                raise IOFailure(f"Failure when creating directory at {dest}", exc) from exc
        elif info.ischr():
            logger.debug("Ignoring tar entry of type character device at %s", dest)
        elif info.isblk():
            logger.debug("Ignoring tar entry of type block device at %s", dest)
        elif info.isfifo():
            logger.debug("Ignoring tar entry of type FIFO at %s", dest)
        else:
            logger.debug("Ignoring unknown tar entry of type %r at %s", info.type, dest)

    def _write_reg_file(self, tar: tarfile.TarFile, info: tarfile.TarInfo, dest: str, mode: int) -> None:
        try:
            os.makedirs(os.path.dirname(dest), exist_ok=True)
            fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_TRUNC | _O_NOFOLLOW, mode)
            with os.fdopen(fd, "wb") as out:
                src = tar.extractfile(info)
                if src is not None:
                    shutil.copyfileobj(src, out, COPY_BUFSIZE)
                os.fchmod(out.fileno(), mode)
        except OSError as exc:
            raise IOFailure(f"Failure when unpacking file to {dest}", exc) from exc
