from __future__ import annotations

import enum


class Behavior(enum.IntEnum):
    AUTO = 0
    TAR = 1
    TAR_GZ = 2
    TAR_XZ = 3
    ZIP = 4


class StreamState(enum.Enum):
    UNCONFIGURED = "unconfigured"
    DETECTING = "detecting"
    CONFIGURED = "configured"
    FAILED = "failed"


# Packing resolves AUTO to this before any bytes are produced
DEFAULT_BEHAVIOR = Behavior.TAR_GZ

BEHAVIOR_NAMES = {
    "auto": Behavior.AUTO,
    "tar": Behavior.TAR,
    "tar.gz": Behavior.TAR_GZ,
    "tar.xz": Behavior.TAR_XZ,
    "zip": Behavior.ZIP,
}

# (offset, magic, behavior), checked in this order; first match wins
SIGNATURES = (
    (0, bytes([0x1F, 0x8B]), Behavior.TAR_GZ),
    (0, bytes([0xFD, 0x37, 0x7A, 0x58, 0x5A, 0x00]), Behavior.TAR_XZ),
    (257, b"ustar", Behavior.TAR),
    (0, bytes([0x50, 0x4B, 0x03, 0x04]), Behavior.ZIP),
)

# Longest prefix any signature needs (ustar magic ends at byte 262)
DETECT_BUDGET = 257 + 5

DEFAULT_BRIDGE_CAPACITY = 64 * 1024
COPY_BUFSIZE = 32 * 1024
