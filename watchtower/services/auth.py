"""Access token lookup for upstream calls.

Session issuance lives elsewhere; this module only answers "which token do
we use for this request" and redirects to sign-in when there is none.
"""

from fastapi import Request

from watchtower.config import settings
from watchtower.errors import AuthRedirect


def require_access_token(request: Request) -> str:
    """Return the upstream token for this request or raise AuthRedirect."""
    token = getattr(request.state, "access_token", None) or settings.media_server_token
    if not token:
        raise AuthRedirect(settings.auth_redirect_url)
    return token
