from __future__ import annotations

import sys
from typing import Optional

from .errors import UnsupportedPlatform


def check_host(platform: Optional[str] = None) -> None:
    """Fail fast on hosts where the stream adapters cannot run."""
    platform = sys.platform if platform is None else platform
    if platform.startswith("win"):
        raise UnsupportedPlatform(
            f"Auto-packing and auto-unpacking are not supported on {platform}"
        )
