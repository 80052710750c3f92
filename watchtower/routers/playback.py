"""Playback negotiation endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from watchtower.models import PreferenceRequest
from watchtower.services.auth import require_access_token
from watchtower.services.negotiator import (
    DeliveryMethod,
    build_stream_descriptor,
    resolve_quality,
)
from watchtower.services.preferences import (
    COOKIE_MAX_AGE,
    COOKIE_NAME,
    encode_preferences,
    get_preference,
    parse_preferences,
    set_preference,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/playback", tags=["playback"])


@router.get("/{title_id}")
async def negotiate_playback(
    title_id: str,
    request: Request,
    t: int = 0,
    quality: Optional[str] = None,
    transcode: bool = False,
    _token: str = Depends(require_access_token),
):
    """
    Describe how to play a title.

    - **t**: resume position in milliseconds
    - **quality**: quality profile id (defaults to original)
    - **transcode**: force re-encoding

    Without an explicit quality or transcode flag, the method that last
    worked for this title (from the preference cookie) is used.
    """
    force = transcode
    if quality is None and not transcode:
        remembered = get_preference(request.cookies.get(COOKIE_NAME), title_id)
        force = remembered is DeliveryMethod.TRANSCODE

    descriptor = build_stream_descriptor(
        title_id,
        offset_seconds=max(t, 0) / 1000,
        quality=resolve_quality(quality),
        force_reencode=force,
    )
    logger.info(f"Negotiated {descriptor.method.value} ({descriptor.quality.id}) for {title_id}")
    return descriptor.to_dict()


@router.post("/{title_id}/preference")
async def remember_method(
    title_id: str,
    body: PreferenceRequest,
    request: Request,
    response: Response,
):
    """Remember the delivery method that worked for a title."""
    prefs = set_preference(
        parse_preferences(request.cookies.get(COOKIE_NAME)),
        title_id,
        DeliveryMethod(body.method),
    )
    response.set_cookie(
        COOKIE_NAME,
        encode_preferences(prefs),
        max_age=COOKIE_MAX_AGE,
        path="/",
        samesite="lax",
    )
    return {"success": True}
