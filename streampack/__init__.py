"""
streampack: stream a directory tree as an archive, and back.

Features:

- ``AutoPacker``: a readable byte stream producing a tar or tar.gz archive of
  a source directory, with live progress counters (``size`` / ``bytes_complete``).
- ``AutoUnpacker``: a writable byte sink that detects the container format
  from the first bytes written and unpacks entries into a destination directory.
- Archival and compression run in a background thread joined to the caller by
  a bounded in-process bridge; worker failures surface on the next call.
- Entries that resolve outside the destination root (``../``, absolute names,
  hard links pointing out, writes through planted symlinks) abort unpacking.

xz-compressed tar and zip are recognized by detection but not implemented.
"""

__version__ = "0.1"

from .constants import Behavior, StreamState
from .errors import (
    ClosedBridge,
    FormatNotImplemented,
    IncompleteStream,
    IOFailure,
    NotInitialized,
    PathTraversal,
    StreamInvariant,
    StreamPackError,
    UnableToDetect,
    UnknownFormat,
    UnsupportedPlatform,
)
from .formats import behavior_name, detect_behavior, resolve_behavior_name
from .packer import AutoPacker
from .unpacker import AutoUnpacker

__all__ = [
    "AutoPacker",
    "AutoUnpacker",
    "Behavior",
    "StreamState",
    "behavior_name",
    "detect_behavior",
    "resolve_behavior_name",
    "StreamPackError",
    "NotInitialized",
    "UnknownFormat",
    "UnsupportedPlatform",
    "UnableToDetect",
    "FormatNotImplemented",
    "PathTraversal",
    "IOFailure",
    "StreamInvariant",
    "IncompleteStream",
    "ClosedBridge",
]
