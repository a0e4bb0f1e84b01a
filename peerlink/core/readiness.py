"""Per-transport readiness state machine.

Backends own one tracker each and drive it from their own I/O contexts as
bring-up progresses and peers come and go. The state is advisory: the manager
reports it but never consults it before sending.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from peerlink.core.errors import ReadinessTransitionError
from peerlink.core.model import Readiness

LOGGER = logging.getLogger(__name__)

ReadinessListener = Callable[[str, Readiness, Readiness], None]

_ALLOWED: dict[Readiness, frozenset[Readiness]] = {
    Readiness.NOT_STARTED: frozenset({Readiness.INITIALIZING}),
    Readiness.INITIALIZING: frozenset({Readiness.READY, Readiness.FAILED}),
    Readiness.READY: frozenset({Readiness.DEGRADED, Readiness.FAILED}),
    Readiness.DEGRADED: frozenset({Readiness.READY, Readiness.FAILED}),
    Readiness.FAILED: frozenset({Readiness.INITIALIZING}),
}


class ReadinessTracker:
    def __init__(self, name: str, listener: ReadinessListener | None = None) -> None:
        self.name = name
        self._state = Readiness.NOT_STARTED
        self._lock = threading.Lock()
        self._listener = listener

    @property
    def state(self) -> Readiness:
        with self._lock:
            return self._state

    def transition(self, new: Readiness) -> bool:
        """Move to `new`, returning False when already there."""
        return self._move(new, only_from=None)

    def update_peer_count(self, count: int) -> None:
        # Only meaningful once bring-up succeeded.
        target = Readiness.READY if count > 0 else Readiness.DEGRADED
        self._move(target, only_from=(Readiness.READY, Readiness.DEGRADED))

    def fail(self, reason: str) -> None:
        LOGGER.error("[%s] bring-up failed: %s", self.name, reason)
        with self._lock:
            skip_init = self._state is Readiness.NOT_STARTED
        if skip_init:
            self._move(Readiness.INITIALIZING, only_from=(Readiness.NOT_STARTED,))
        self._move(Readiness.FAILED, only_from=None)

    def _move(self, new: Readiness, *, only_from: tuple[Readiness, ...] | None) -> bool:
        with self._lock:
            old = self._state
            if old is new:
                return False
            if only_from is not None and old not in only_from:
                return False
            if new not in _ALLOWED[old]:
                raise ReadinessTransitionError(
                    f"{self.name}: transition {old.value} -> {new.value} is not allowed"
                )
            self._state = new
            listener = self._listener

        LOGGER.info("[%s] readiness %s -> %s", self.name, old.value, new.value)
        if listener is not None:
            listener(self.name, old, new)
        return True
