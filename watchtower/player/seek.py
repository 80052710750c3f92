"""
Buffer-aware seeking.

A transcoded stream can only be played from where the transcoder has got to,
so a seek outside the downloaded ranges means restarting the transcode at the
new offset. Those reloads are debounced (scrubbing produces a burst of
targets) and never overlap.
"""

import logging
from typing import Sequence

from watchtower.player.media import BufferedRange
from watchtower.player.state import PlayerState, SeekDeferred, clamp_position

logger = logging.getLogger(__name__)

TOLERANCE_BEFORE = 1.0
TOLERANCE_AFTER = 5.0  # absorbs data that is still arriving


def is_buffered(target: float, ranges: Sequence[BufferedRange]) -> bool:
    """True if target lies within [start - 1s, end + 5s] of any range."""
    return any(r.start - TOLERANCE_BEFORE <= target <= r.end + TOLERANCE_AFTER for r in ranges)


class SeekManager:
    """Decides between a native seek and a debounced stream reload."""

    def __init__(self, controller, scheduler, debounce: float = 0.5):
        self.controller = controller
        self.scheduler = scheduler
        self.debounce = debounce

    def _key(self, session_id: str):
        return (session_id, "seek-debounce")

    def request(self, target: float, commit: bool = False, user: bool = True) -> None:
        """
        Seek to target seconds.

        `commit` marks the end of a gesture (drag released) and skips the
        debounce. `user` is False for seeks coming from the media element
        itself, which are honoured even while the scrubber is locked.
        """
        session = self.controller.session
        if session.state in (PlayerState.ENDED, PlayerState.ERROR, PlayerState.INITIALIZING):
            return

        target = clamp_position(target, session.duration)

        if session.is_direct_play or is_buffered(target, session.buffered):
            self.controller.seek_native(target)
            return

        if session.reload_in_flight:
            # Only the newest target is kept; no second reload is queued
            self.controller.dispatch(SeekDeferred(target))
            return

        if user and not session.scrubber_ready:
            logger.debug(f"Scrubber locked, ignoring out-of-buffer seek to {target:.1f}s")
            return

        self.controller.dispatch(SeekDeferred(target))
        if commit:
            self.scheduler.cancel(self._key(session.session_id))
            self._fire(session.session_id)
        else:
            self.scheduler.call_later(
                self._key(session.session_id),
                self.debounce,
                lambda: self._fire(session.session_id),
            )

    def commit(self) -> None:
        """Flush a pending debounced seek right away."""
        session = self.controller.session
        if self.scheduler.cancel(self._key(session.session_id)):
            self._fire(session.session_id)

    def cancel(self) -> None:
        self.scheduler.cancel(self._key(self.controller.session.session_id))

    def _fire(self, session_id: str) -> None:
        session = self.controller.session
        if session.session_id != session_id or session.pending_seek is None:
            return
        if session.reload_in_flight:
            return
        target = session.pending_seek
        self.controller.dispatch(SeekDeferred(None))
        logger.info(f"Reloading stream at {target:.1f}s")
        self.controller.reload_at(target)
