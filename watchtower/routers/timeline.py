"""Watch-state endpoints - timeline reports and watched marking."""

import logging

from fastapi import APIRouter, Depends

from watchtower.deps import get_media_server
from watchtower.models import TimelineRequest, WatchedRequest
from watchtower.services.media_server import MediaServerClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["timeline"])


@router.post("/timeline")
async def report_timeline(
    body: TimelineRequest,
    server: MediaServerClient = Depends(get_media_server),
):
    """
    Forward a playback position report to the media server.

    The player calls this every 10 seconds while playing and on every
    play/pause/stop. Positions are in milliseconds.
    """
    await server.report_timeline(body.title_id, body.state, body.position_ms, body.duration_ms)
    if body.state == "stopped":
        logger.info(f"Playback stopped: {body.title_id} at {body.position_ms}ms")
    return {"success": True}


@router.post("/watched")
async def mark_watched(
    body: WatchedRequest,
    server: MediaServerClient = Depends(get_media_server),
):
    """Mark a title as watched."""
    await server.scrobble(body.title_id)
    logger.info(f"Marked watched: {body.title_id}")
    return {"success": True}


@router.delete("/watched")
async def mark_unwatched(
    body: WatchedRequest,
    server: MediaServerClient = Depends(get_media_server),
):
    """Mark a title as unwatched."""
    await server.unscrobble(body.title_id)
    return {"success": True}
