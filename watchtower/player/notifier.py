"""
Fire-and-forget notifications from the player to the Watchtower server.

The player only ever talks to our own endpoints (/timeline, /watched,
/playback); the server attaches the media server token. Nothing here is
awaited by playback logic and every failure is logged and dropped. The one
read, `remembered_method`, happens before a controller is built.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Set

import httpx

from watchtower.services.negotiator import DeliveryMethod

logger = logging.getLogger(__name__)

BEACON_TIMEOUT = 5.0


@dataclass(frozen=True)
class TimelineEvent:
    title_id: str
    state: str  # playing | paused | stopped
    position_ms: int
    duration_ms: int

    def to_payload(self) -> dict:
        return {
            "titleId": self.title_id,
            "state": self.state,
            "positionMs": self.position_ms,
            "durationMs": self.duration_ms,
        }


class Notifier:
    """Sends timeline / watched calls in the background."""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0,
                 beacon_transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._beacon_transport = beacon_transport
        self._tasks: Set[asyncio.Task] = set()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    def report(self, event: TimelineEvent) -> None:
        self._spawn(self._post("POST", "/timeline", event.to_payload()), f"timeline {event.state}")

    def mark_watched(self, title_id: str) -> None:
        self._spawn(self._post("POST", "/watched", {"titleId": title_id}), "watched")

    def remember_method(self, title_id: str, method) -> None:
        """Record the delivery method that worked; the server keeps it in a cookie."""
        self._spawn(
            self._post("POST", f"/playback/{title_id}/preference", {"method": method.value}),
            "preference",
        )

    async def remembered_method(self, title_id: str) -> Optional[DeliveryMethod]:
        """
        Ask the server how this title should start.

        The server answers from the preference cookie that `remember_method`
        set in this client. Any failure means no preference.
        """
        try:
            response = await self.client.get(f"/playback/{title_id}")
            response.raise_for_status()
            return DeliveryMethod(response.json()["method"])
        except httpx.HTTPError as e:
            logger.warning(f"Preference lookup failed for {title_id}: {type(e).__name__}: {e}")
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unexpected preference reply for {title_id}: {e}")
        return None

    def beacon(self, event: TimelineEvent) -> threading.Thread:
        """
        Send a last report that must outlive the caller.

        Runs on its own non-daemon thread with a synchronous client, so it
        neither blocks teardown nor dies with the event loop.
        """
        thread = threading.Thread(
            target=self._send_beacon,
            args=(event.to_payload(),),
            name=f"beacon-{event.title_id}",
        )
        thread.start()
        return thread

    async def aclose(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._client is not None:
            await self._client.aclose()

    def _spawn(self, coro, label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(f"No event loop, dropped {label} notification")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _post(self, method: str, path: str, payload: dict) -> None:
        try:
            response = await self.client.request(method, path, json=payload)
            if response.is_error:
                logger.error(f"{path} rejected: {response.status_code} {response.text[:200]}")
        except httpx.HTTPError as e:
            logger.error(f"Failed to send {path}: {type(e).__name__}: {e}")

    def _send_beacon(self, payload: dict) -> None:
        try:
            with httpx.Client(
                base_url=self.base_url, timeout=BEACON_TIMEOUT, transport=self._beacon_transport
            ) as client:
                response = client.post("/timeline", json=payload)
            if response.is_error:
                logger.error(f"Stop beacon rejected: {response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Stop beacon failed: {type(e).__name__}: {e}")
