"""Presentation adapter for driver assignment.

The reconciler settles an assignment straight onto the awaiting-pickup
status. For display, the assignment is first announced as "driver found"
and the settled status is shown after a short grace period.
"""

import logging
import threading
from typing import Callable, Protocol

from courier.config.defaults import DRIVER_FOUND_STATUS
from courier.models.events import ASSIGNMENT_EVENT_TYPES, ReconciledStatus

logger = logging.getLogger(__name__)

Display = Callable[[str, ReconciledStatus], None]


class Timer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


def _thread_timer(delay: float, callback: Callable[[], None]) -> Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class PickupAnnouncer:
    """Reconciler observer that turns an assignment into a two-step display."""

    def __init__(
        self,
        display: Display,
        grace_seconds: float = 2.0,
        timer_factory: TimerFactory = _thread_timer,
    ):
        self.display = display
        self.grace_seconds = grace_seconds
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._pending: Timer | None = None

    def __call__(self, status: ReconciledStatus) -> None:
        announce = status.event_type in ASSIGNMENT_EVENT_TYPES and self.grace_seconds > 0
        with self._lock:
            if self._pending is not None:
                # A newer status supersedes a settle step still waiting
                self._pending.cancel()
                self._pending = None
            if announce:
                timer = self._timer_factory(self.grace_seconds, lambda: self._settle(timer, status))
                self._pending = timer

        if not announce:
            self.display(status.status, status)
            return
        self.display(DRIVER_FOUND_STATUS, status)
        timer.start()

    def _settle(self, timer: Timer, status: ReconciledStatus) -> None:
        with self._lock:
            if self._pending is not timer:
                return
            self._pending = None
        self.display(status.status, status)

    def cancel(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None
