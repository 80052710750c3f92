"""
Segmented-streaming transport for runtimes that cannot play HLS natively.

`HlsClient` fetches playlists and segments and feeds the media element.
`AdaptiveTransport` sits on top and decides what each client error means:
retry the load, recover the decoder, or give up and let the controller fall
back.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol
from urllib.parse import urljoin

import httpx
import m3u8

logger = logging.getLogger(__name__)


class ErrorType(str, Enum):
    NETWORK = "network"
    MEDIA = "media"
    OTHER = "other"


@dataclass(frozen=True)
class TransportError:
    type: ErrorType
    details: str
    fatal: bool = True


class SegmentClient(Protocol):
    on_error: Optional[Callable[[TransportError], None]]

    def attach_media(self, media) -> None: ...
    def load_source(self, url: str) -> None: ...
    def start_load(self) -> None: ...
    def recover_media_error(self) -> None: ...
    def destroy(self) -> None: ...


class HlsClient:
    """
    Minimal HLS loader built on httpx and m3u8.

    Picks the first variant of a master playlist, then downloads segments in
    order, polling the media playlist until it carries ENDLIST (transcoder
    playlists grow while the job runs).
    """

    def __init__(self, base_url: str, http: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0, segment_retries: int = 2):
        self.base_url = base_url
        self.segment_retries = segment_retries
        self.on_error: Optional[Callable[[TransportError], None]] = None
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http is None
        self._media = None
        self._url: Optional[str] = None
        self._next_segment = 0
        self._task: Optional[asyncio.Task] = None

    def attach_media(self, media) -> None:
        self._media = media

    def load_source(self, url: str) -> None:
        self._url = urljoin(self.base_url, url)
        self._next_segment = 0
        self.start_load()

    def start_load(self) -> None:
        if self._task is not None:
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def recover_media_error(self) -> None:
        # _next_segment still points at the segment that failed to append
        self.start_load()

    def destroy(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._media = None
        if self._owns_http:
            asyncio.get_running_loop().create_task(self._http.aclose())

    def _emit(self, error: TransportError) -> None:
        if self.on_error is not None:
            self.on_error(error)

    async def _fetch_playlist(self, url: str) -> m3u8.M3U8:
        response = await self._http.get(url)
        response.raise_for_status()
        return m3u8.loads(response.text, uri=url)

    async def _fetch_segment(self, url: str) -> bytes:
        attempt = 0
        while True:
            try:
                response = await self._http.get(url)
                response.raise_for_status()
                return response.content
            except httpx.HTTPError as e:
                if attempt >= self.segment_retries:
                    raise
                attempt += 1
                self._emit(TransportError(ErrorType.NETWORK, f"segment retry {attempt}: {e}", fatal=False))

    async def _run(self) -> None:
        try:
            media_url = self._url
            playlist = await self._fetch_playlist(media_url)
            if playlist.is_variant:
                media_url = playlist.playlists[0].absolute_uri
                playlist = await self._fetch_playlist(media_url)

            while True:
                for segment in playlist.segments[self._next_segment:]:
                    data = await self._fetch_segment(segment.absolute_uri)
                    if self._media is None:
                        return
                    try:
                        self._media.append_segment(data, segment.duration or 0.0)
                    except ValueError as e:
                        self._emit(TransportError(ErrorType.MEDIA, str(e)))
                        return
                    self._next_segment += 1

                if playlist.is_endlist:
                    return
                await asyncio.sleep(playlist.target_duration or 2)
                playlist = await self._fetch_playlist(media_url)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            self._emit(TransportError(ErrorType.NETWORK, f"{type(e).__name__}: {e}"))
        except (ValueError, IndexError) as e:
            self._emit(TransportError(ErrorType.OTHER, f"bad playlist: {e}"))


class AdaptiveTransport:
    """Classifies client errors and owns the recovery budget."""

    def __init__(self, client: SegmentClient, on_fatal: Callable[[TransportError], None],
                 max_recoveries: int = 3):
        self.client = client
        self.on_fatal = on_fatal
        self.max_recoveries = max_recoveries
        self.network_retries = 0
        self.media_recoveries = 0
        self.destroyed = False

    def attach(self, media, url: str) -> None:
        self.client.on_error = self.handle_error
        self.client.attach_media(media)
        self.client.load_source(url)

    def handle_error(self, error: TransportError) -> None:
        if self.destroyed:
            return
        logger.error(f"Transport error: {error.type.value} {error.details} (fatal={error.fatal})")
        if not error.fatal:
            return

        if error.type is ErrorType.NETWORK and self.network_retries < self.max_recoveries:
            self.network_retries += 1
            self.client.start_load()
            return

        if error.type is ErrorType.MEDIA and self.media_recoveries < self.max_recoveries:
            self.media_recoveries += 1
            self.client.recover_media_error()
            return

        self.destroy()
        self.on_fatal(error)

    def destroy(self) -> None:
        if not self.destroyed:
            self.destroyed = True
            self.client.destroy()
