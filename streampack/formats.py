from __future__ import annotations

from .constants import BEHAVIOR_NAMES, DETECT_BUDGET, SIGNATURES, Behavior
from .errors import UnableToDetect, UnknownFormat


def resolve_behavior_name(name: str) -> Behavior:
    """Map a format name such as ``"tar.gz"`` to its :class:`Behavior`.

    Raises:
        UnknownFormat: ``name`` is not one of the recognized names.
    """
    try:
        return BEHAVIOR_NAMES[name]
    except KeyError:
        raise UnknownFormat(name) from None


def behavior_name(behavior: Behavior) -> str:
    for name, value in BEHAVIOR_NAMES.items():
        if value == behavior:
            return name
    raise ValueError(f"Unknown behavior: {behavior!r}")


def detect_behavior(prefix: bytes) -> Behavior:
    """Identify the container format from the leading bytes of a stream.

    Returns ``Behavior.AUTO`` while the prefix is too short to decide. Once
    ``DETECT_BUDGET`` bytes are available and nothing matched, detection has
    failed for good.

    Raises:
        UnableToDetect: no signature matched within the byte budget.
    """
    for offset, magic, behavior in SIGNATURES:
        end = offset + len(magic)
        if len(prefix) >= end and prefix[offset:end] == magic:
            return behavior
    if len(prefix) >= DETECT_BUDGET:
        raise UnableToDetect(f"Unable to detect pack type from the first {len(prefix)} bytes")
    return Behavior.AUTO
