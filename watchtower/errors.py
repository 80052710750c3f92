"""Error taxonomy shared by the media proxy and the upstream client."""

from typing import Optional


class MediaServerError(Exception):
    """Base class for failures talking to the upstream media server."""

    status_code = 500
    code = "server_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class NetworkError(MediaServerError):
    """Timeout or connection failure before the upstream answered."""

    status_code = 502
    code = "network_error"


class UpstreamError(MediaServerError):
    """The upstream answered with a non-success status."""

    code = "upstream_error"

    def to_dict(self) -> dict:
        return {**super().to_dict(), "status": self.status_code}


class NotFoundError(MediaServerError):
    """Missing metadata or no playable file part."""

    status_code = 404
    code = "not_found"


class RateLimitedError(MediaServerError):
    """HTTP 429 from upstream; carries the retry hint in seconds."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        return {**super().to_dict(), "retryAfter": self.retry_after}


class AuthRedirect(Exception):
    """Raised by the auth collaborator when no access token is available."""

    def __init__(self, location: str):
        super().__init__(location)
        self.location = location
