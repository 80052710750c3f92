"""
Media proxy endpoints - stream bytes from the media server to the browser.

The proxy exists because the browser cannot reach the media server directly
(CORS, mixed content, internal hostnames) and must never see its token.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from watchtower.config import settings
from watchtower.deps import get_media_server
from watchtower.errors import MediaServerError, NotFoundError
from watchtower.services.media_server import MediaServerClient
from watchtower.services.negotiator import HLS_MIME
from watchtower.services.playlist import rewrite_playlist

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stream"])

PASSTHROUGH_HEADERS = ("Content-Type", "Content-Length", "Content-Range", "Accept-Ranges")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "Range",
    "Access-Control-Expose-Headers": "Content-Range, Accept-Ranges, Content-Length",
}


def _copy_headers(upstream, names) -> dict:
    return {name: upstream.headers[name] for name in names if name in upstream.headers}


@router.get("/stream/{title_id}")
async def stream_title(
    title_id: str,
    request: Request,
    server: MediaServerClient = Depends(get_media_server),
):
    """
    Stream the original media file with range support.

    - Range is forwarded to the media server unmodified
    - 200/206 responses are passed through with their range headers
    """
    try:
        metadata = await server.get_metadata(title_id)
    except MediaServerError as e:
        logger.error(f"Metadata lookup failed for {title_id}: {e.message}")
        raise NotFoundError("Media not found") from e

    if not metadata.playable_file_location:
        logger.error(f"No media part found for: {title_id}")
        raise NotFoundError("No media stream available")

    logger.info(f"Streaming: {metadata.title} ({title_id})")
    upstream = await server.open_stream(
        metadata.playable_file_location, request.headers.get("Range")
    )

    headers = _copy_headers(upstream, PASSTHROUGH_HEADERS)
    headers.update(CORS_HEADERS)

    return StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        headers=headers,
        background=BackgroundTask(upstream.aclose),
    )


@router.get("/image")
async def proxy_image(
    path: Optional[str] = Query(None),
    server: MediaServerClient = Depends(get_media_server),
):
    """
    Proxy an artwork image.

    Image paths embed a version timestamp that changes whenever the artwork
    changes, so successful responses are cached as immutable.
    """
    if not path:
        logger.error("Image proxy called without a path")
        return JSONResponse(
            {"error": "missing_path", "message": "Missing path parameter"}, status_code=400
        )
    if not path.startswith("/"):
        # Anything else would splice a different host into the upstream URL
        logger.error(f"Image proxy rejected path: {path}")
        return JSONResponse(
            {"error": "invalid_path", "message": "Path must start with /"}, status_code=400
        )

    upstream = await server.fetch_image(path)

    headers = _copy_headers(upstream, ("Content-Type", "Content-Length"))
    headers["Cache-Control"] = f"public, max-age={settings.image_cache_max_age}, immutable"

    return StreamingResponse(
        upstream.aiter_raw(),
        status_code=200,
        headers=headers,
        background=BackgroundTask(upstream.aclose),
    )


@router.get("/hls/{title_id}/{sub_path:path}")
async def proxy_hls(
    title_id: str,
    sub_path: str,
    request: Request,
    server: MediaServerClient = Depends(get_media_server),
):
    """
    Proxy the transcoder's HLS resources.

    - /hls/{title_id}/start.m3u8?... - master playlist
    - /hls/{title_id}/session/... - session playlists and segments

    Playlists are rewritten so nested URIs come back through this route.
    """
    sub_path = sub_path or "start.m3u8"
    upstream = await server.open_transcode(sub_path, request.query_params.multi_items())

    content_type = upstream.headers.get("Content-Type", "")
    if "mpegurl" in content_type.lower() or sub_path.endswith(".m3u8"):
        try:
            text = (await upstream.aread()).decode("utf-8", errors="replace")
        finally:
            await upstream.aclose()

        origin = f"{request.url.scheme}://{request.url.netloc}"
        return Response(
            rewrite_playlist(text, title_id, origin),
            media_type=HLS_MIME,
            headers={"Access-Control-Allow-Origin": "*", "Cache-Control": "no-cache"},
        )

    headers = _copy_headers(upstream, ("Content-Type", "Content-Length"))
    headers["Access-Control-Allow-Origin"] = "*"
    headers["Cache-Control"] = f"max-age={settings.segment_cache_max_age}"

    return StreamingResponse(
        upstream.aiter_raw(),
        status_code=upstream.status_code,
        headers=headers,
        background=BackgroundTask(upstream.aclose),
    )
