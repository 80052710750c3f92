"""Media server protocol constants."""

# Identifies this application to the media server. Sent as headers on API
# calls and as query parameters on stream URLs.
CLIENT_HEADERS = {
    "X-Plex-Product": "Watchtower",
    "X-Plex-Version": "1.0.0",
    "X-Plex-Platform": "Web",
    "X-Plex-Platform-Version": "1.0.0",
    "X-Plex-Device": "Browser",
    "X-Plex-Device-Name": "Watchtower Web",
}

TOKEN_PARAM = "X-Plex-Token"
LIBRARY_IDENTIFIER = "com.plexapp.plugins.library"
TRANSCODE_PREFIX = "/video/:/transcode/universal/"
