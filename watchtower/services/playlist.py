"""HLS playlist rewriting for the transcoder proxy."""

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit

import m3u8

from watchtower.constants import TOKEN_PARAM, TRANSCODE_PREFIX

logger = logging.getLogger(__name__)

# Some server builds emit the transcoder path without the second slash
ALT_TRANSCODE_PREFIX = "/video:/transcode/universal/"


def strip_token(uri: str) -> str:
    """Drop the access token from a URI's query string, if present."""
    if "?" not in uri or TOKEN_PARAM not in uri:
        return uri
    base, _, query = uri.partition("?")
    params = [(k, v) for k, v in parse_qsl(query, keep_blank_values=True) if k != TOKEN_PARAM]
    return f"{base}?{urlencode(params)}" if params else base


def rewrite_path(path: str, proxy_base: str) -> str:
    """Map a transcoder path onto the proxy: /video/:/transcode/universal/x -> {proxy_base}/x"""
    for prefix in (TRANSCODE_PREFIX, ALT_TRANSCODE_PREFIX):
        if path.startswith(prefix):
            return f"{proxy_base}/{path[len(prefix):]}"
    if path.startswith("/"):
        return f"{proxy_base}{path}"
    return f"{proxy_base}/{path}"


def rewrite_uri(uri: str, proxy_base: str) -> str:
    """
    Rewrite absolute and root-relative URIs; leave relative ones alone.

    Relative URIs resolve against the playlist's own proxied URL in the
    player. The token is stripped everywhere; the proxy re-adds it upstream.
    """
    uri = strip_token(uri)
    if uri.startswith(("http://", "https://")):
        parts = urlsplit(uri)
        path = parts.path + (f"?{parts.query}" if parts.query else "")
        return rewrite_path(path, proxy_base)
    if uri.startswith("/"):
        return rewrite_path(uri, proxy_base)
    return uri


def rewrite_playlist(content: str, title_id: str, origin: str) -> str:
    """Point every upstream URI in a master or media playlist back at the proxy."""
    proxy_base = f"{origin.rstrip('/')}/hls/{title_id}"
    playlist = m3u8.loads(content)

    if playlist.is_variant:
        targets = list(playlist.playlists) + list(playlist.media)
    else:
        targets = list(playlist.segments)
        targets += [seg.init_section for seg in playlist.segments if seg.init_section]
        segment_map = playlist.segment_map
        if isinstance(segment_map, list):
            targets += segment_map
        targets += [key for key in playlist.keys if key]

    # Init sections and keys are shared between segments
    seen = set()
    for item in targets:
        if id(item) in seen or not getattr(item, "uri", None):
            continue
        seen.add(id(item))
        item.uri = rewrite_uri(item.uri, proxy_base)

    logger.debug(f"Rewrote {len(seen)} playlist URIs for {title_id}")
    return playlist.dumps()
