"""
Playback session state and its transitions.

A session is an immutable value; `reduce(session, event)` returns the next
one. Everything the controller guards on (reload in flight, first frame
seen, pending seek target, watched flag) is a field here, so the whole state
machine can be exercised without a media element or a network.
"""

import uuid
from dataclasses import dataclass, replace
from enum import Enum
from functools import singledispatch
from typing import Optional, Tuple

from watchtower.player.media import BufferedRange
from watchtower.services.negotiator import DeliveryMethod, StreamDescriptor

MIN_SCRUB_BUFFER = 10.0  # seconds ahead before a transcoded stream can be scrubbed


class PlayerState(str, Enum):
    INITIALIZING = "initializing"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    BUFFERING = "buffering"
    ENDED = "ended"
    ERROR = "error"


class ErrorKind(str, Enum):
    NETWORK = "network"
    DECODE = "decode"
    UNSUPPORTED = "unsupported"
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    UNKNOWN = "unknown"


class InvalidTransition(ValueError):
    pass


@dataclass(frozen=True)
class PlaybackError:
    """What the user sees when playback gives up."""
    kind: ErrorKind
    message: str
    can_retry: bool = True
    can_transcode: bool = False


@dataclass(frozen=True)
class PlaybackSession:
    session_id: str
    title_id: str
    descriptor: StreamDescriptor
    state: PlayerState = PlayerState.INITIALIZING
    position: float = 0.0
    duration: float = 0.0
    resume_at: float = 0.0
    buffered: Tuple[BufferedRange, ...] = ()
    seeking: bool = False
    initialized: bool = False
    reload_in_flight: bool = False
    pending_seek: Optional[float] = None
    tried_transcode: bool = False
    watched: bool = False
    scrubber_ready: bool = True
    muted: bool = False
    wants_to_play: bool = True
    needs_play_prompt: bool = False
    error: Optional[PlaybackError] = None

    @classmethod
    def start(
        cls,
        title_id: str,
        descriptor: StreamDescriptor,
        duration: float = 0.0,
        session_id: Optional[str] = None,
    ) -> "PlaybackSession":
        return cls(
            session_id=session_id or uuid.uuid4().hex,
            title_id=title_id,
            descriptor=descriptor,
            duration=max(duration, 0.0),
            position=clamp_position(descriptor.offset_seconds, duration),
            resume_at=descriptor.offset_seconds,
            tried_transcode=not descriptor.is_direct_play,
            scrubber_ready=descriptor.is_direct_play,
        )

    @property
    def method(self) -> DeliveryMethod:
        return self.descriptor.method

    @property
    def is_direct_play(self) -> bool:
        return self.descriptor.is_direct_play

    @property
    def buffer_ahead(self) -> float:
        """Seconds of contiguous buffer ahead of the playhead."""
        ahead = [r.end - self.position for r in self.buffered if r.start - 1 <= self.position <= r.end]
        return max(ahead, default=0.0)


def clamp_position(position: float, duration: float) -> float:
    position = max(position, 0.0)
    if duration > 0:
        position = min(position, duration)
    return position


# ── Events ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StreamRequested:
    """A new descriptor is being loaded (mount, reload, fallback, retry)."""
    descriptor: StreamDescriptor
    reload: bool = False
    explicit: bool = False  # user picked a quality or pressed retry


@dataclass(frozen=True)
class FrameReady:
    pass


@dataclass(frozen=True)
class AutoplayMuted:
    pass


@dataclass(frozen=True)
class AutoplayBlocked:
    pass


@dataclass(frozen=True)
class PlaybackStarted:
    pass


@dataclass(frozen=True)
class PlaybackPaused:
    pass


@dataclass(frozen=True)
class Waiting:
    pass


@dataclass(frozen=True)
class TimeUpdated:
    position: float
    buffered: Tuple[BufferedRange, ...] = ()


@dataclass(frozen=True)
class DurationChanged:
    duration: float


@dataclass(frozen=True)
class SeekStarted:
    target: float


@dataclass(frozen=True)
class SeekCompleted:
    position: float


@dataclass(frozen=True)
class SeekDeferred:
    """Record (or clear, with None) the single pending seek target."""
    target: Optional[float]


@dataclass(frozen=True)
class MediaEnded:
    pass


@dataclass(frozen=True)
class LoadTimedOut:
    pass


@dataclass(frozen=True)
class PlaybackFailed:
    error: PlaybackError


@dataclass(frozen=True)
class WatchedMarked:
    pass


# ── Reducer ───────────────────────────────────────────────────────────────

ACTIVE_STATES = (PlayerState.PLAYING, PlayerState.PAUSED, PlayerState.BUFFERING)


def reduce(session: PlaybackSession, event, min_scrub_buffer: float = MIN_SCRUB_BUFFER) -> PlaybackSession:
    """Apply one event. Ended sessions only accept the watched marker."""
    if session.state is PlayerState.ENDED and not isinstance(event, WatchedMarked):
        return session
    return _apply(event, session, min_scrub_buffer)


@singledispatch
def _apply(event, session: PlaybackSession, min_scrub_buffer: float) -> PlaybackSession:
    raise TypeError(f"Unknown playback event: {event!r}")


@_apply.register
def _(event: StreamRequested, session, min_scrub_buffer):
    new = event.descriptor
    if (not session.is_direct_play and new.is_direct_play
            and session.state is not PlayerState.INITIALIZING and not event.explicit):
        raise InvalidTransition("Delivery can only move from direct play to transcode")

    return replace(
        session,
        descriptor=new,
        state=PlayerState.LOADING,
        position=clamp_position(new.offset_seconds, session.duration),
        resume_at=new.offset_seconds,
        buffered=(),
        seeking=False,
        initialized=False,
        reload_in_flight=event.reload,
        pending_seek=session.pending_seek if event.reload else None,
        tried_transcode=session.tried_transcode or not new.is_direct_play,
        scrubber_ready=new.is_direct_play,
        error=None,
        needs_play_prompt=False,
    )


@_apply.register
def _(event: FrameReady, session, min_scrub_buffer):
    if session.state is not PlayerState.LOADING:
        return session
    return replace(session, initialized=True, reload_in_flight=False)


@_apply.register
def _(event: AutoplayMuted, session, min_scrub_buffer):
    return replace(session, muted=True)


@_apply.register
def _(event: AutoplayBlocked, session, min_scrub_buffer):
    if session.state is not PlayerState.LOADING:
        return session
    return replace(
        session,
        state=PlayerState.PAUSED,
        wants_to_play=False,
        needs_play_prompt=True,
    )


@_apply.register
def _(event: PlaybackStarted, session, min_scrub_buffer):
    if session.state not in (PlayerState.LOADING,) + ACTIVE_STATES:
        return session
    return replace(
        session,
        state=PlayerState.PLAYING,
        wants_to_play=True,
        needs_play_prompt=False,
    )


@_apply.register
def _(event: PlaybackPaused, session, min_scrub_buffer):
    if session.state not in ACTIVE_STATES:
        return session
    return replace(session, state=PlayerState.PAUSED, wants_to_play=False)


@_apply.register
def _(event: Waiting, session, min_scrub_buffer):
    if session.state is not PlayerState.PLAYING:
        return session
    return replace(session, state=PlayerState.BUFFERING)


@_apply.register
def _(event: TimeUpdated, session, min_scrub_buffer):
    updated = replace(
        session,
        position=clamp_position(event.position, session.duration),
        buffered=tuple(event.buffered),
    )
    if updated.is_direct_play:
        return replace(updated, scrubber_ready=True)
    if (not updated.scrubber_ready and not updated.reload_in_flight
            and updated.state in ACTIVE_STATES
            and updated.buffer_ahead >= min_scrub_buffer):
        return replace(updated, scrubber_ready=True)
    return updated


@_apply.register
def _(event: DurationChanged, session, min_scrub_buffer):
    if event.duration <= 0:
        return session
    return replace(
        session,
        duration=event.duration,
        position=clamp_position(session.position, event.duration),
    )


@_apply.register
def _(event: SeekStarted, session, min_scrub_buffer):
    return replace(session, seeking=True, position=clamp_position(event.target, session.duration))


@_apply.register
def _(event: SeekCompleted, session, min_scrub_buffer):
    return replace(session, seeking=False, position=clamp_position(event.position, session.duration))


@_apply.register
def _(event: SeekDeferred, session, min_scrub_buffer):
    target = None if event.target is None else clamp_position(event.target, session.duration)
    return replace(session, pending_seek=target)


@_apply.register
def _(event: MediaEnded, session, min_scrub_buffer):
    return replace(
        session,
        state=PlayerState.ENDED,
        position=session.duration or session.position,
        wants_to_play=False,
        seeking=False,
    )


@_apply.register
def _(event: LoadTimedOut, session, min_scrub_buffer):
    if session.state is not PlayerState.LOADING:
        return session
    error = PlaybackError(
        kind=ErrorKind.TIMEOUT,
        message="Loading is taking too long. The stream may be unavailable.",
        can_retry=True,
        can_transcode=session.is_direct_play and not session.tried_transcode,
    )
    return _to_error(session, error)


@_apply.register
def _(event: PlaybackFailed, session, min_scrub_buffer):
    return _to_error(session, event.error)


@_apply.register
def _(event: WatchedMarked, session, min_scrub_buffer):
    return replace(session, watched=True)


def _to_error(session: PlaybackSession, error: PlaybackError) -> PlaybackSession:
    return replace(
        session,
        state=PlayerState.ERROR,
        error=error,
        reload_in_flight=False,
        pending_seek=None,
        seeking=False,
    )
