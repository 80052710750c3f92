"""
Media server API client.

All upstream traffic goes through here so the access token is only ever
attached on the server side. Calls raise the errors in `watchtower.errors`;
routers turn them into JSON responses.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx

from watchtower.config import settings
from watchtower.constants import CLIENT_HEADERS, LIBRARY_IDENTIFIER, TOKEN_PARAM, TRANSCODE_PREFIX
from watchtower.errors import (
    NetworkError,
    NotFoundError,
    RateLimitedError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = 60


@dataclass
class TitleMetadata:
    """The parts of a title's metadata the player needs."""
    title_id: str
    title: str
    playable_file_location: Optional[str]
    duration_ms: Optional[int] = None

    @classmethod
    def from_payload(cls, title_id: str, payload: dict) -> "TitleMetadata":
        container = payload.get("MediaContainer")
        items = container.get("Metadata") if isinstance(container, dict) else None
        if not items or not isinstance(items, list):
            raise NotFoundError(f"No metadata for {title_id}")
        item = items[0]

        media = (item.get("Media") or [{}])[0]
        part = (media.get("Part") or [{}])[0]

        return cls(
            title_id=title_id,
            title=item.get("title", "Unknown"),
            playable_file_location=part.get("key"),
            duration_ms=item.get("duration") or media.get("duration"),
        )


def _retry_after(response: httpx.Response) -> int:
    value = response.headers.get("Retry-After")
    try:
        return int(value) if value else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER


class MediaServerClient:
    """Thin async wrapper over a shared httpx client for one access token."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        token: str,
        server_url: Optional[str] = None,
        client_id: Optional[str] = None,
    ):
        self.http = http
        self.token = token
        self.server_url = (server_url or settings.media_server_url).rstrip("/")
        self.client_id = client_id or settings.client_id

    def _headers(self) -> Dict[str, str]:
        return {
            **CLIENT_HEADERS,
            "Accept": "application/json",
            "X-Plex-Client-Identifier": self.client_id,
            TOKEN_PARAM: self.token,
        }

    async def _send(self, request: httpx.Request, stream: bool = False) -> httpx.Response:
        try:
            return await self.http.send(request, stream=stream)
        except httpx.TimeoutException as e:
            logger.error(f"Upstream timeout: {request.url.path}")
            raise NetworkError("Request timed out") from e
        except httpx.TransportError as e:
            logger.error(f"Upstream connection failed: {type(e).__name__}: {e}")
            raise NetworkError(str(e) or type(e).__name__) from e

    async def _get(self, path: str, params: Optional[dict] = None) -> httpx.Response:
        request = self.http.build_request(
            "GET", f"{self.server_url}{path}", params=params, headers=self._headers()
        )
        response = await self._send(request)
        if not response.is_success:
            raise UpstreamError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response

    async def _get_json(self, path: str, params: Optional[dict] = None) -> dict:
        response = await self._get(path, params)
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Non-JSON response from {path}: {response.headers.get('Content-Type', 'unknown')}")
            raise UpstreamError("Invalid response from media server", status_code=502) from e
        if not isinstance(data, dict):
            raise UpstreamError("Invalid response from media server", status_code=502)
        return data

    async def _get_action(self, path: str, params: dict) -> None:
        """GET an endpoint that only acknowledges (timeline, scrobble)."""
        await self._get(path, params)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_identity(self) -> dict:
        data = await self._get_json("/")
        container = data.get("MediaContainer")
        return container if isinstance(container, dict) else {}

    async def get_metadata(self, title_id: str) -> TitleMetadata:
        data = await self._get_json(f"/library/metadata/{title_id}")
        return TitleMetadata.from_payload(title_id, data)

    # ------------------------------------------------------------------
    # Byte streams
    # ------------------------------------------------------------------

    async def open_stream(self, location: str, range_header: Optional[str] = None) -> httpx.Response:
        """
        Open the raw media file for streaming.

        The Range header is forwarded untouched. The caller owns the returned
        response and must close it. 200 and 206 are the only accepted codes.
        """
        headers = {"Accept": "*/*"}
        if range_header:
            headers["Range"] = range_header

        request = self.http.build_request(
            "GET",
            f"{self.server_url}{location}",
            params={TOKEN_PARAM: self.token},
            headers=headers,
        )
        response = await self._send(request, stream=True)

        if not response.is_success and response.status_code != 206:
            await response.aclose()
            logger.error(f"Stream upstream error: {response.status_code} {response.reason_phrase}")
            raise UpstreamError(
                f"Upstream error: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response

    async def open_transcode(self, sub_path: str, query: List[tuple]) -> httpx.Response:
        """Open a transcoder resource (playlist or segment) for the HLS proxy."""
        params = list(query)
        if not any(key == TOKEN_PARAM for key, _ in params):
            params.append((TOKEN_PARAM, self.token))

        request = self.http.build_request(
            "GET",
            f"{self.server_url}{TRANSCODE_PREFIX}{sub_path}",
            params=params,
            headers={"Accept": "*/*"},
        )
        response = await self._send(request, stream=True)

        if not response.is_success:
            body = (await response.aread())[:500]
            await response.aclose()
            logger.error(f"HLS upstream error: {response.status_code} for {sub_path}")
            if body:
                logger.debug(f"HLS upstream error body: {body!r}")
            raise UpstreamError(
                f"Upstream error: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response

    async def fetch_image(self, path: str) -> httpx.Response:
        """
        Fetch an artwork image by its server path.

        Paths may already carry a query string (e.g. width/height).
        """
        separator = "&" if "?" in path else "?"
        url = f"{self.server_url}{path}{separator}{TOKEN_PARAM}={self.token}"
        request = self.http.build_request("GET", url, headers={"Accept": "image/*"})
        response = await self._send(request, stream=True)

        if response.is_success:
            return response

        await response.aclose()
        status = response.status_code
        logger.error(f"Image upstream error {status} {response.reason_phrase} for {path}")

        if status == 429:
            raise RateLimitedError(
                "Media server is rate limiting requests",
                retry_after=_retry_after(response),
            )
        if status == 404:
            raise NotFoundError("Image not found")
        raise UpstreamError(
            f"Media server returned {status}: {response.reason_phrase}",
            status_code=status,
        )

    # ------------------------------------------------------------------
    # Watch state
    # ------------------------------------------------------------------

    async def report_timeline(self, title_id: str, state: str, time_ms: int, duration_ms: int) -> None:
        await self._get_action("/:/timeline", {
            "ratingKey": title_id,
            "key": f"/library/metadata/{title_id}",
            "state": state,
            "time": str(time_ms),
            "duration": str(duration_ms),
            "identifier": LIBRARY_IDENTIFIER,
        })

    async def scrobble(self, title_id: str) -> None:
        """Mark a title watched."""
        await self._get_action("/:/scrobble", {"key": title_id, "identifier": LIBRARY_IDENTIFIER})

    async def unscrobble(self, title_id: str) -> None:
        """Mark a title unwatched."""
        await self._get_action("/:/unscrobble", {"key": title_id, "identifier": LIBRARY_IDENTIFIER})
