"""Shared fixtures: a faked media server, a manual clock and a fake media element."""

from typing import Callable, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

from watchtower.deps import get_http_client
from watchtower.main import app
from watchtower.player.controller import PlaybackController, PlayerOptions
from watchtower.player.media import BufferedRange, PlayNotAllowed
from watchtower.services.auth import require_access_token

TOKEN = "secret-token"


class _Body(httpx.AsyncByteStream):
    """An unread response body, so the proxy can stream it like a real transport's."""

    def __init__(self, data: bytes):
        self._data = data

    async def __aiter__(self):
        yield self._data


# ── Server side ───────────────────────────────────────────────────────────

class Upstream:
    """Stands in for the media server. Routes are matched on URL path."""

    def __init__(self):
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, path: str, status_code: int = 200, **kwargs) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            built = httpx.Response(status_code, **kwargs)
            return httpx.Response(status_code, headers=built.headers, stream=_Body(built.content))

        self.routes[path] = handler

    def add_handler(self, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[path] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404)
        return handler(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def client(upstream):
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app.dependency_overrides[get_http_client] = lambda: http
    app.dependency_overrides[require_access_token] = lambda: TOKEN
    yield TestClient(app)
    app.dependency_overrides.clear()


def metadata_payload(title_id="274036", part_key="/library/parts/99/file.mkv", duration=3600000):
    media = {"duration": duration, "Part": [{"key": part_key}] if part_key else []}
    return {
        "MediaContainer": {
            "Metadata": [{"ratingKey": title_id, "title": "Test Movie", "duration": duration, "Media": [media]}]
        }
    }


# ── Player side ───────────────────────────────────────────────────────────

class FakeScheduler:
    """Keyed timers driven by `advance()` instead of a running loop."""

    def __init__(self):
        self.now = 0.0
        self._timers = {}

    def call_later(self, key, delay, callback):
        self._timers[key] = [self.now + delay, None, callback]

    def call_every(self, key, interval, callback):
        self._timers[key] = [self.now + interval, interval, callback]

    def cancel(self, key):
        return self._timers.pop(key, None) is not None

    def cancel_session(self, session_id):
        for key in [k for k in self._timers if k[0] == session_id]:
            del self._timers[key]

    def pending(self, key):
        return key in self._timers

    def advance(self, seconds):
        end = self.now + seconds
        while True:
            due = [(timer[0], key) for key, timer in self._timers.items() if timer[0] <= end]
            if not due:
                break
            when, key = min(due, key=lambda item: item[0])
            timer = self._timers[key]
            self.now = when
            if timer[1] is None:
                del self._timers[key]
            else:
                timer[0] = when + timer[1]
            timer[2]()
        self.now = end


class FakeMedia:
    """A media element that forwards play/pause to its listener like a browser would."""

    def __init__(self, native_hls=True, autoplay=True, muted_autoplay=True):
        self.current_time = 0.0
        self.duration = 0.0
        self.muted = False
        self.paused = True
        self.ranges: List[BufferedRange] = []
        self.native_hls = native_hls
        self.autoplay = autoplay
        self.muted_autoplay = muted_autoplay
        self.loaded: List[str] = []
        self.unloads = 0
        self.segments = []
        self.listener = None

    def buffered(self):
        return list(self.ranges)

    def can_play_type(self, mime):
        return self.native_hls

    def load(self, url):
        self.loaded.append(url)

    def unload(self):
        self.unloads += 1
        self.paused = True
        self.ranges = []

    def play(self):
        allowed = self.muted_autoplay if self.muted else self.autoplay
        if not allowed:
            raise PlayNotAllowed()
        self.paused = False
        if self.listener is not None:
            self.listener.on_playing()

    def pause(self):
        self.paused = True
        if self.listener is not None:
            self.listener.on_pause()

    def append_segment(self, data, duration):
        self.segments.append((data, duration))


class FakeNotifier:
    def __init__(self):
        self.reports = []
        self.watched = []
        self.beacons = []
        self.methods = []
        self.lookups = []

    def report(self, event):
        self.reports.append(event)

    def mark_watched(self, title_id):
        self.watched.append(title_id)

    def remember_method(self, title_id, method):
        self.methods.append((title_id, method))

    async def remembered_method(self, title_id):
        self.lookups.append(title_id)
        found = [method for key, method in self.methods if key == title_id]
        return found[-1] if found else None

    def beacon(self, event):
        self.beacons.append(event)

    def states(self):
        return [event.state for event in self.reports]


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def make_controller(media, notifier, scheduler):
    def factory(title_id="274036", **kwargs):
        kwargs.setdefault("options", PlayerOptions())
        controller = PlaybackController(title_id, media, notifier, scheduler, **kwargs)
        media.listener = controller
        return controller
    return factory


def start_playing(controller, media, duration=3600.0, ranges=()):
    """Mount and bring the controller to the playing state."""
    controller.mount()
    media.duration = duration
    controller.on_loaded_metadata()
    media.ranges = list(ranges)
    controller.on_can_play()
    return controller.session
