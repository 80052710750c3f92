"""
Playback session controller.

Owns one `PlaybackSession` per mounted title and is the only thing that
replaces it. Media element callbacks, user actions, timers and transport
failures all become events fed through `reduce`; side effects (loading a
source, tearing down, notifying) happen here around the transitions.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

from watchtower.config import settings
from watchtower.player.media import MediaElement, MediaErrorCode, PlayNotAllowed
from watchtower.player.notifier import Notifier
from watchtower.player.progress import ProgressReporter
from watchtower.player.seek import SeekManager, is_buffered
from watchtower.player.state import (
    AutoplayBlocked,
    AutoplayMuted,
    DurationChanged,
    ErrorKind,
    FrameReady,
    LoadTimedOut,
    MediaEnded,
    PlaybackError,
    PlaybackFailed,
    PlaybackPaused,
    PlaybackSession,
    PlaybackStarted,
    PlayerState,
    SeekCompleted,
    SeekDeferred,
    SeekStarted,
    StreamRequested,
    TimeUpdated,
    Waiting,
    reduce,
)
from watchtower.player.timers import Scheduler
from watchtower.player.transport import AdaptiveTransport, ErrorType, HlsClient, TransportError
from watchtower.services.negotiator import (
    HLS_MIME,
    DeliveryMethod,
    QualityProfile,
    StreamDescriptor,
    build_stream_descriptor,
)

logger = logging.getLogger(__name__)

MEDIA_ERROR_MESSAGES = {
    MediaErrorCode.NETWORK: (ErrorKind.NETWORK, "Network error while loading video"),
    MediaErrorCode.DECODE: (ErrorKind.DECODE, "Video format not supported"),
    MediaErrorCode.SRC_NOT_SUPPORTED: (ErrorKind.UNSUPPORTED, "Video source not supported"),
}
DEFAULT_MEDIA_ERROR = (ErrorKind.UNKNOWN, "Failed to load video")

TRANSPORT_ERROR_MESSAGES = {
    ErrorType.NETWORK: (ErrorKind.NETWORK, "Network error while loading video"),
    ErrorType.MEDIA: (ErrorKind.DECODE, "Video format not supported"),
    ErrorType.OTHER: (ErrorKind.TRANSPORT, "Failed to load video"),
}


@dataclass
class PlayerOptions:
    server_url: str = "http://localhost:8000"
    progress_interval: float = 10.0
    watched_threshold: float = 0.9
    seek_debounce: float = 0.5
    direct_play_load_timeout: float = 15.0
    transcode_load_timeout: float = 30.0
    min_scrub_buffer: float = 10.0
    max_transport_recoveries: int = 3
    resume_tolerance: float = 5.0

    @classmethod
    def from_settings(cls) -> "PlayerOptions":
        return cls(
            server_url=settings.public_url,
            progress_interval=settings.progress_interval,
            watched_threshold=settings.watched_threshold,
            seek_debounce=settings.seek_debounce,
            direct_play_load_timeout=settings.direct_play_load_timeout,
            transcode_load_timeout=settings.transcode_load_timeout,
            min_scrub_buffer=settings.min_scrub_buffer,
            max_transport_recoveries=settings.max_transport_recoveries,
            resume_tolerance=settings.resume_tolerance,
        )

    def load_timeout(self, descriptor: StreamDescriptor) -> float:
        if descriptor.is_direct_play:
            return self.direct_play_load_timeout
        return self.transcode_load_timeout


class PlaybackController:
    """
    Drives one media element for one title.

    The runtime forwards media events to the `on_*` methods; the UI calls
    `play`, `pause`, `toggle`, `seek`, `retry`, `try_transcode` and
    `select_quality`. Build it with `open()` to honour the remembered
    delivery method, call `mount()` once and `unmount()` when the player
    goes away.
    """

    def __init__(
        self,
        title_id: str,
        media: MediaElement,
        notifier: Notifier,
        scheduler: Scheduler,
        options: Optional[PlayerOptions] = None,
        quality: Optional[QualityProfile] = None,
        offset: float = 0.0,
        duration: float = 0.0,
        force_transcode: bool = False,
        negotiate: Callable[..., StreamDescriptor] = build_stream_descriptor,
        transport_factory: Optional[Callable[[], object]] = None,
        on_method_confirmed: Optional[Callable[[str, DeliveryMethod], None]] = None,
        remembered: Optional[DeliveryMethod] = None,
    ):
        self.media = media
        self.notifier = notifier
        self.scheduler = scheduler
        self.options = options or PlayerOptions.from_settings()
        self.negotiate = negotiate
        self.transport_factory = transport_factory or (lambda: HlsClient(self.options.server_url))
        self.on_method_confirmed = on_method_confirmed or notifier.remember_method
        self.transport: Optional[AdaptiveTransport] = None
        self.unmounted = False
        self._confirmed: Optional[StreamDescriptor] = None

        if quality is None and remembered is DeliveryMethod.TRANSCODE:
            logger.info(f"{title_id} needed transcoding last time, starting transcoded")
            force_transcode = True

        descriptor = negotiate(title_id, offset_seconds=offset, quality=quality, force_reencode=force_transcode)
        self.session = PlaybackSession.start(title_id, descriptor, duration=duration)

        self.seek_manager = SeekManager(self, scheduler, self.options.seek_debounce)
        self.reporter = ProgressReporter(
            self,
            notifier,
            scheduler,
            interval=self.options.progress_interval,
            threshold=self.options.watched_threshold,
        )

    @classmethod
    async def open(cls, title_id: str, media: MediaElement, notifier: Notifier,
                   scheduler: Scheduler, **kwargs) -> "PlaybackController":
        """Build a controller that starts with the method that last worked for the title."""
        if "remembered" not in kwargs and not kwargs.get("force_transcode"):
            kwargs["remembered"] = await notifier.remembered_method(title_id)
        return cls(title_id, media, notifier, scheduler, **kwargs)

    # ── State ─────────────────────────────────────────────────────────────

    def dispatch(self, event) -> PlaybackSession:
        if self.unmounted:
            return self.session
        previous = self.session
        self.session = reduce(previous, event, self.options.min_scrub_buffer)
        self._track_load_deadline(previous, self.session)
        self.reporter.observe(previous, self.session)
        return self.session

    def _deadline_key(self):
        return (self.session.session_id, "load-deadline")

    def _track_load_deadline(self, previous: PlaybackSession, current: PlaybackSession) -> None:
        loading = current.state is PlayerState.LOADING and not current.initialized
        if not loading:
            self.scheduler.cancel(self._deadline_key())
            return
        if previous.state is not PlayerState.LOADING or previous.descriptor is not current.descriptor:
            descriptor = current.descriptor
            self.scheduler.call_later(
                self._deadline_key(),
                self.options.load_timeout(descriptor),
                lambda: self._on_load_deadline(descriptor),
            )

    def _on_load_deadline(self, descriptor: StreamDescriptor) -> None:
        session = self.session
        if session.descriptor is not descriptor or session.state is not PlayerState.LOADING:
            return
        logger.error(
            f"Load deadline hit for {session.title_id} ({session.method.value}, "
            f"{self.options.load_timeout(descriptor):.0f}s)"
        )
        self._teardown()
        self.dispatch(LoadTimedOut())

    # ── Loading ───────────────────────────────────────────────────────────

    def mount(self) -> None:
        session = self.session
        logger.info(
            f"Mounting {session.title_id}: {session.method.value} "
            f"at {session.descriptor.offset_seconds}s ({session.descriptor.quality.id})"
        )
        self.dispatch(StreamRequested(session.descriptor))
        self._attach(session.descriptor)

    def _attach(self, descriptor: StreamDescriptor) -> None:
        if descriptor.protocol == "hls" and not self.media.can_play_type(HLS_MIME):
            self.transport = AdaptiveTransport(
                self.transport_factory(),
                on_fatal=self._on_transport_fatal,
                max_recoveries=self.options.max_transport_recoveries,
            )
            self.transport.attach(self.media, descriptor.url)
        else:
            self.media.load(descriptor.url)

    def _teardown(self) -> None:
        if self.transport is not None:
            self.transport.destroy()
            self.transport = None
        self.media.unload()

    def _load(self, descriptor: StreamDescriptor, reload: bool = False, explicit: bool = False) -> None:
        self._teardown()
        self.dispatch(StreamRequested(descriptor, reload=reload, explicit=explicit))
        self._attach(descriptor)

    def _renegotiate(self, offset: float, quality: Optional[QualityProfile] = None,
                     force_reencode: bool = False) -> StreamDescriptor:
        session = self.session
        return self.negotiate(
            session.title_id,
            offset_seconds=offset,
            quality=quality or session.descriptor.quality,
            force_reencode=force_reencode,
        )

    def reload_at(self, target: float) -> None:
        """Restart the transcode at target seconds."""
        session = self.session
        if session.reload_in_flight or session.state in (PlayerState.ENDED, PlayerState.ERROR):
            return
        # Lets the media server end the old transcode job
        self.reporter.report("stopped", replace(session, position=target))
        descriptor = self._renegotiate(target, force_reencode=not session.is_direct_play)
        self._load(descriptor, reload=True)

    # ── Media element callbacks ───────────────────────────────────────────

    def on_loaded_metadata(self) -> None:
        self.dispatch(DurationChanged(self.media.duration))

    def on_can_play(self) -> None:
        session = self.session
        if session.state is not PlayerState.LOADING or session.initialized:
            return
        self.dispatch(FrameReady())
        self._verify_resume()
        self._autoplay()
        self._replay_pending_seek()

    def _verify_resume(self) -> None:
        target = self.session.resume_at
        if target > 0 and self.media.current_time < target - self.options.resume_tolerance:
            logger.info(f"Stream started at {self.media.current_time:.1f}s, seeking to {target}s")
            self.seek_native(target)

    def _autoplay(self) -> None:
        try:
            self.media.play()
            return
        except PlayNotAllowed:
            if self.media.muted:
                self.dispatch(AutoplayBlocked())
                return

        logger.info("Autoplay refused, retrying muted")
        self.media.muted = True
        self.dispatch(AutoplayMuted())
        try:
            self.media.play()
        except PlayNotAllowed:
            logger.info("Muted autoplay refused, waiting for the user")
            self.dispatch(AutoplayBlocked())

    def _replay_pending_seek(self) -> None:
        target = self.session.pending_seek
        if target is None:
            return
        self.dispatch(TimeUpdated(self.media.current_time, tuple(self.media.buffered())))
        self.dispatch(SeekDeferred(None))
        self.seek_manager.request(target, commit=True, user=False)

    def on_playing(self) -> None:
        self.dispatch(PlaybackStarted())
        session = self.session
        if session.state is PlayerState.PLAYING and self._confirmed is not session.descriptor:
            self._confirmed = session.descriptor
            self.on_method_confirmed(session.title_id, session.method)

    def on_pause(self) -> None:
        self.dispatch(PlaybackPaused())

    def on_waiting(self) -> None:
        self.dispatch(Waiting())

    def on_time_update(self) -> None:
        self.dispatch(TimeUpdated(self.media.current_time, tuple(self.media.buffered())))

    def on_seeking(self) -> None:
        if self.session.seeking:
            return
        target = self.media.current_time
        self.dispatch(SeekStarted(target))
        session = self.session
        if not session.is_direct_play and not is_buffered(target, session.buffered):
            self.seek_manager.request(target, user=False)

    def on_seeked(self) -> None:
        self.dispatch(SeekCompleted(self.media.current_time))

    def on_ended(self) -> None:
        self.dispatch(MediaEnded())

    def on_error(self, code: int) -> None:
        try:
            kind, message = MEDIA_ERROR_MESSAGES.get(MediaErrorCode(code), DEFAULT_MEDIA_ERROR)
        except ValueError:
            kind, message = DEFAULT_MEDIA_ERROR
        logger.error(f"Media error {code} on {self.session.title_id}: {message}")
        self._handle_failure(kind, message)

    def _on_transport_fatal(self, error: TransportError) -> None:
        self.transport = None
        kind, message = TRANSPORT_ERROR_MESSAGES[error.type]
        self._handle_failure(kind, message)

    def _handle_failure(self, kind: ErrorKind, message: str) -> None:
        session = self.session
        if session.state in (PlayerState.ENDED, PlayerState.ERROR) or self.unmounted:
            return

        if session.is_direct_play and not session.tried_transcode:
            logger.warning(f"Direct play failed ({message}), falling back to transcode at {session.position:.0f}s")
            self._load(self._renegotiate(session.position, force_reencode=True))
            return

        self._teardown()
        self.dispatch(PlaybackFailed(PlaybackError(
            kind=kind,
            message=message,
            can_retry=True,
            can_transcode=session.is_direct_play,
        )))

    # ── User actions ──────────────────────────────────────────────────────

    def play(self) -> None:
        try:
            self.media.play()
        except PlayNotAllowed:
            logger.warning("Play refused by the runtime")

    def pause(self) -> None:
        self.media.pause()

    def toggle(self) -> None:
        if self.session.state in (PlayerState.PLAYING, PlayerState.BUFFERING):
            self.pause()
        else:
            self.play()

    def seek(self, target: float, commit: bool = False) -> None:
        self.seek_manager.request(target, commit=commit)

    def seek_native(self, target: float) -> None:
        self.dispatch(SeekStarted(target))
        self.media.current_time = target

    def retry(self) -> None:
        """Reload the same delivery from the last known position."""
        session = self.session
        if session.state is PlayerState.ENDED:
            return
        descriptor = self._renegotiate(session.position, force_reencode=not session.is_direct_play)
        self._load(descriptor, explicit=True)

    def try_transcode(self) -> None:
        session = self.session
        if session.state is PlayerState.ENDED:
            return
        self._load(self._renegotiate(session.position, force_reencode=True), explicit=True)

    def select_quality(self, profile: QualityProfile) -> None:
        session = self.session
        if session.state is PlayerState.ENDED:
            return
        logger.info(f"Switching {session.title_id} to {profile.id}")
        self._load(self._renegotiate(session.position, quality=profile), explicit=True)

    def unmount(self) -> None:
        if self.unmounted:
            return
        session = self.session
        self.reporter.stop(session)
        self.scheduler.cancel_session(session.session_id)
        self._teardown()
        self.unmounted = True
