"""
Keyed timers for the player.

Every timer belongs to a session: keys are (session_id, name). Scheduling a
key that is already pending cancels the old handle first, so for a given key
only the most recently scheduled callback can ever fire.
"""

import asyncio
import logging
from typing import Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

TimerKey = Tuple[str, Hashable]


class Scheduler:
    """asyncio-backed delayed and repeating callbacks."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handles: Dict[TimerKey, asyncio.TimerHandle] = {}

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, key: TimerKey, delay: float, callback: Callable[[], None]) -> None:
        self.cancel(key)

        def fire():
            self._handles.pop(key, None)
            callback()

        self._handles[key] = self.loop.call_later(delay, fire)

    def call_every(self, key: TimerKey, interval: float, callback: Callable[[], None]) -> None:
        """Run callback every interval seconds until the key is cancelled."""
        self.cancel(key)

        def tick():
            self._handles[key] = self.loop.call_later(interval, tick)
            callback()

        self._handles[key] = self.loop.call_later(interval, tick)

    def cancel(self, key: TimerKey) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_session(self, session_id: str) -> None:
        for key in [k for k in self._handles if k[0] == session_id]:
            self.cancel(key)

    def pending(self, key: TimerKey) -> bool:
        return key in self._handles
