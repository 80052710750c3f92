"""The media element the player drives, as seen from Python."""

from dataclasses import dataclass
from enum import IntEnum
from typing import Protocol, Sequence


class MediaErrorCode(IntEnum):
    ABORTED = 1
    NETWORK = 2
    DECODE = 3
    SRC_NOT_SUPPORTED = 4


class PlayNotAllowed(Exception):
    """The runtime refused to start playback without a user gesture."""


@dataclass(frozen=True)
class BufferedRange:
    """A downloaded span, in seconds."""
    start: float
    end: float


class MediaElement(Protocol):
    """
    Whatever renders the video: a browser bridge, a native player, a fake.

    Event callbacks (can-play, playing, waiting, time updates, errors) are
    delivered by the runtime to the controller's `on_*` methods.
    """

    current_time: float
    duration: float
    muted: bool
    paused: bool

    def buffered(self) -> Sequence[BufferedRange]: ...

    def can_play_type(self, mime: str) -> bool: ...

    def load(self, url: str) -> None: ...

    def unload(self) -> None:
        """Pause, drop the source and stop all network activity."""

    def play(self) -> None:
        """Start playback; raises PlayNotAllowed when not permitted."""

    def pause(self) -> None: ...

    def append_segment(self, data: bytes, duration: float) -> None:
        """Feed a media segment when a transport delivers bytes itself."""
