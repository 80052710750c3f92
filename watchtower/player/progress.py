"""Progress reporting - timeline notifications and one-shot watched marking."""

import logging
from typing import Optional

from watchtower.player.notifier import TimelineEvent
from watchtower.player.state import PlaybackSession, PlayerState, WatchedMarked

logger = logging.getLogger(__name__)


class ProgressReporter:
    """
    Watches controller transitions and keeps the server informed.

    - every `interval` seconds while playing
    - immediately on playing / paused / ended / unmount
    - mark watched once per session at `threshold` of the duration
    """

    def __init__(self, controller, notifier, scheduler, interval: float = 10.0, threshold: float = 0.9):
        self.controller = controller
        self.notifier = notifier
        self.scheduler = scheduler
        self.interval = interval
        self.threshold = threshold

    def observe(self, previous: PlaybackSession, current: PlaybackSession) -> None:
        if current.state is not previous.state:
            self._on_state_change(previous, current)
        if current.position != previous.position:
            self.check_watched(current)

    def _on_state_change(self, previous: PlaybackSession, current: PlaybackSession) -> None:
        key = (current.session_id, "progress")

        if current.state is PlayerState.PLAYING:
            self.report("playing", current)
            self.scheduler.call_every(key, self.interval, self._tick)
            return

        self.scheduler.cancel(key)
        if current.state is PlayerState.PAUSED and previous.state in (PlayerState.PLAYING, PlayerState.BUFFERING):
            self.report("paused", current)
        elif current.state is PlayerState.ENDED:
            self.report("stopped", current)
            self.mark_watched()

    def _tick(self) -> None:
        session = self.controller.session
        if session.state is PlayerState.PLAYING:
            self.report("playing", session)

    def timeline_event(self, state: str, session: PlaybackSession) -> Optional[TimelineEvent]:
        """None while the duration is still unknown."""
        if session.duration <= 0:
            return None
        return TimelineEvent(
            title_id=session.title_id,
            state=state,
            position_ms=round(session.position * 1000),
            duration_ms=round(session.duration * 1000),
        )

    def report(self, state: str, session: Optional[PlaybackSession] = None) -> None:
        event = self.timeline_event(state, session or self.controller.session)
        if event is not None:
            self.notifier.report(event)

    def check_watched(self, session: PlaybackSession) -> None:
        if session.watched or session.duration <= 0:
            return
        if session.position / session.duration >= self.threshold:
            self.mark_watched()

    def mark_watched(self) -> None:
        session = self.controller.session
        if session.watched:
            return
        # Flag first: the call is fire-and-forget and must never repeat
        self.controller.dispatch(WatchedMarked())
        logger.info(f"Marking {session.title_id} watched at {session.position:.0f}s")
        self.notifier.mark_watched(session.title_id)

    def stop(self, session: PlaybackSession) -> None:
        """Final report on unmount, sent so that it survives teardown."""
        self.scheduler.cancel((session.session_id, "progress"))
        event = self.timeline_event("stopped", session)
        if event is not None:
            self.notifier.beacon(event)
