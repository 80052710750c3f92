"""Watchtower - FastAPI Application."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from watchtower.config import settings
from watchtower.deps import get_media_server
from watchtower.errors import AuthRedirect, MediaServerError, RateLimitedError
from watchtower.routers import playback, stream, timeline
from watchtower.services.media_server import MediaServerClient

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One pooled client for all upstream calls; each call is bounded by the timeout
    app.state.http_client = httpx.AsyncClient(timeout=settings.request_timeout)
    try:
        yield
    finally:
        await app.state.http_client.aclose()


# Create app
app = FastAPI(
    title=settings.app_name,
    description="Adaptive playback for a personal media server",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware (stream responses carry their own headers too)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
)

# Include routers
app.include_router(stream.router)
app.include_router(timeline.router)
app.include_router(playback.router)


@app.exception_handler(MediaServerError)
async def media_server_error_handler(request: Request, exc: MediaServerError):
    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


@app.exception_handler(AuthRedirect)
async def auth_redirect_handler(request: Request, exc: AuthRedirect):
    return RedirectResponse(exc.location, status_code=302)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "body"
    return JSONResponse(
        {"error": f"{field}: {first.get('msg', 'invalid request')}"}, status_code=400
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "docs": "/docs",
        "endpoints": {
            "stream": "/stream/{title_id} - Range-aware media passthrough",
            "hls": "/hls/{title_id}/start.m3u8 - Transcoder proxy",
            "playback": "/playback/{title_id} - Negotiate a stream",
            "timeline": "/timeline - Report playback position",
            "watched": "/watched - Mark watched / unwatched",
        },
    }


@app.get("/health")
async def health(server: MediaServerClient = Depends(get_media_server)):
    """Health check - also verifies the media server is reachable."""
    try:
        identity = await server.get_identity()
    except MediaServerError as e:
        logger.warning(f"Media server unreachable: {e.message}")
        return JSONResponse(
            {"status": "degraded", "mediaServer": {"connected": False, "error": e.message}},
            status_code=503,
        )
    return {
        "status": "healthy",
        "mediaServer": {
            "connected": True,
            "version": identity.get("version"),
            "machineIdentifier": identity.get("machineIdentifier"),
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8765)
