"""Background notifications to our own endpoints: payloads, failures and the stop beacon."""

import asyncio
import json
import logging

import httpx

from watchtower.main import app
from watchtower.player.notifier import Notifier, TimelineEvent
from watchtower.services.negotiator import DeliveryMethod

BASE = "http://watchtower.test"

EVENT = TimelineEvent(title_id="274036", state="playing", position_ms=125000, duration_ms=3600000)


def send(handler, action):
    """Run one notifier action against a mock transport and wait for it to finish."""
    async def run():
        notifier = Notifier(BASE, client=httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(handler)))
        action(notifier)
        await notifier.aclose()

    asyncio.run(run())


def test_timeline_payload_shape():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"success": True})

    send(handler, lambda notifier: notifier.report(EVENT))

    assert len(seen) == 1
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/timeline"
    assert json.loads(seen[0].content) == {
        "titleId": "274036",
        "state": "playing",
        "positionMs": 125000,
        "durationMs": 3600000,
    }


def test_watched_and_preference_payloads():
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"success": True})

    def action(notifier):
        notifier.mark_watched("274036")
        notifier.remember_method("274036", DeliveryMethod.TRANSCODE)

    send(handler, action)

    assert sorted(seen) == [
        ("/playback/274036/preference", {"method": "transcode"}),
        ("/watched", {"titleId": "274036"}),
    ]


def test_connect_error_is_logged_and_dropped(caplog):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with caplog.at_level(logging.ERROR, logger="watchtower.player.notifier"):
        send(handler, lambda notifier: notifier.report(EVENT))

    assert "Failed to send /timeline: ConnectError" in caplog.text


def test_error_status_is_logged_and_dropped(caplog):
    def handler(request):
        return httpx.Response(500, text="boom")

    with caplog.at_level(logging.ERROR, logger="watchtower.player.notifier"):
        send(handler, lambda notifier: notifier.mark_watched("274036"))

    assert "/watched rejected: 500 boom" in caplog.text


def test_report_without_event_loop_is_dropped(caplog):
    notifier = Notifier(BASE)

    with caplog.at_level(logging.WARNING, logger="watchtower.player.notifier"):
        notifier.report(EVENT)

    assert "No event loop, dropped timeline playing notification" in caplog.text


def test_beacon_posts_timeline_from_its_own_thread():
    seen = []

    def handler(request):
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200)

    notifier = Notifier(BASE, beacon_transport=httpx.MockTransport(handler))
    stopped = TimelineEvent(title_id="274036", state="stopped", position_ms=5000, duration_ms=3600000)

    thread = notifier.beacon(stopped)
    thread.join(timeout=5)

    assert not thread.daemon
    assert seen == [("/timeline", stopped.to_payload())]


def test_beacon_failure_is_logged(caplog):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    notifier = Notifier(BASE, beacon_transport=httpx.MockTransport(handler))

    with caplog.at_level(logging.ERROR, logger="watchtower.player.notifier"):
        notifier.beacon(EVENT).join(timeout=5)

    assert "Stop beacon failed: ConnectError" in caplog.text


def test_remembered_method_round_trips_through_the_cookie(client):
    async def run():
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
        notifier = Notifier("http://testserver", client=http)
        before = await notifier.remembered_method("274036")
        notifier.remember_method("274036", DeliveryMethod.TRANSCODE)
        await asyncio.gather(*notifier._tasks)
        after = await notifier.remembered_method("274036")
        await notifier.aclose()
        return before, after

    before, after = asyncio.run(run())

    assert before is DeliveryMethod.DIRECT_PLAY
    assert after is DeliveryMethod.TRANSCODE


def test_remembered_method_failure_means_no_preference():
    async def run():
        http = httpx.AsyncClient(base_url=BASE, transport=httpx.MockTransport(lambda request: httpx.Response(502)))
        notifier = Notifier(BASE, client=http)
        result = await notifier.remembered_method("1")
        await notifier.aclose()
        return result

    assert asyncio.run(run()) is None
