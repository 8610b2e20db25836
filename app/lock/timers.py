"""
Phase timer scheduler for the session state machine.

At most one named repeating timer is live at any time.  ``switch()`` cancels
whatever is running before arming the new timer, and a callback that itself
switches phase stops its own timer from being re-armed.  This is what keeps
the remaining-time counters from being decremented twice per second.

Timers use ``loop.call_later`` on the running event loop, so callbacks never
run concurrently with request handlers.
"""

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class TimerScheduler:
    def __init__(self, interval: float = 1.0) -> None:
        self._interval = interval
        self._name: str | None = None
        self._callback: Callable[[], None] | None = None
        self._handle: asyncio.TimerHandle | None = None
        self._generation = 0

    @property
    def active(self) -> str | None:
        """Name of the live timer, or None."""
        return self._name

    def switch(self, name: str, callback: Callable[[], None]) -> None:
        """Cancel every timer, then arm exactly one."""
        self.cancel_all()
        self._name = name
        self._callback = callback
        self._arm(self._generation)
        logger.debug("Timer %r armed", name)

    def cancel_all(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._name = None
        self._callback = None
        self._generation += 1

    def _arm(self, generation: int) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._interval, self._fire, generation)

    def _fire(self, generation: int) -> None:
        if generation != self._generation or self._callback is None:
            return
        try:
            self._callback()
        except Exception:
            logger.exception("Timer %r callback failed", self._name)
        # the callback may have switched or cancelled
        if generation == self._generation:
            self._arm(generation)
