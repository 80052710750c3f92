"""FastAPI dependencies shared by the routers."""

import httpx
from fastapi import Depends, Request

from watchtower.services.auth import require_access_token
from watchtower.services.media_server import MediaServerClient


def get_http_client(request: Request) -> httpx.AsyncClient:
    """The app-wide upstream client created in the lifespan handler."""
    return request.app.state.http_client


def get_media_server(
    http: httpx.AsyncClient = Depends(get_http_client),
    token: str = Depends(require_access_token),
) -> MediaServerClient:
    return MediaServerClient(http, token)
