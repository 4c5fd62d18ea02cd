from __future__ import annotations

import threading
from typing import Optional


class ErrorCell:
    """Set-once error slot shared by a background worker and its caller.

    The first stored error wins; later stores are ignored. Reads take no lock:
    the slot only ever moves from ``None`` to one exception.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None

    def store_error(self, err: BaseException) -> None:
        with self._lock:
            if self._error is None:
                self._error = err

    def error(self) -> Optional[BaseException]:
        return self._error
