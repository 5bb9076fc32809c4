"""One-shot latch used for trace-once and warn-once diagnostics."""

from __future__ import annotations

import threading


class OneShotLatch:
    """A flag that exactly one caller can claim.

    Several workers may race to be first; ``claim()`` returns True for one of
    them and False for everybody else.  A latch created with ``armed=False``
    never grants a claim.
    """

    def __init__(self, armed: bool = True):
        self._armed = bool(armed)
        self._lock = threading.Lock()

    def claim(self) -> bool:
        with self._lock:
            if not self._armed:
                return False
            self._armed = False
            return True

    @property
    def armed(self) -> bool:
        return self._armed
