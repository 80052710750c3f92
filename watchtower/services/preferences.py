"""
Per-title playback preference cookie.

Remembers which delivery method last worked for a title so the next visit
can start with it. Cookie value: URL-encoded JSON mapping title id to method,
e.g. {"274036": "transcode", "123456": "direct_play"}.
"""

import json
from typing import Dict, Optional
from urllib.parse import quote, unquote

from watchtower.services.negotiator import DeliveryMethod

COOKIE_NAME = "playback_prefs"
COOKIE_MAX_AGE = 60 * 60 * 24 * 30  # 30 days
MAX_ENTRIES = 100


def parse_preferences(cookie_value: Optional[str]) -> Dict[str, DeliveryMethod]:
    """Decode the cookie, dropping anything that isn't a known method."""
    if not cookie_value:
        return {}
    try:
        raw = json.loads(unquote(cookie_value))
    except ValueError:
        return {}
    if not isinstance(raw, dict):
        return {}

    prefs = {}
    for title_id, method in raw.items():
        try:
            prefs[str(title_id)] = DeliveryMethod(method)
        except ValueError:
            continue
    return prefs


def get_preference(cookie_value: Optional[str], title_id: str) -> Optional[DeliveryMethod]:
    return parse_preferences(cookie_value).get(title_id)


def set_preference(
    prefs: Dict[str, DeliveryMethod], title_id: str, method: DeliveryMethod
) -> Dict[str, DeliveryMethod]:
    """Return a copy with the method recorded, keeping the newest entries."""
    updated = {k: v for k, v in prefs.items() if k != title_id}
    updated[title_id] = method
    if len(updated) > MAX_ENTRIES:
        updated = dict(list(updated.items())[-MAX_ENTRIES:])
    return updated


def encode_preferences(prefs: Dict[str, DeliveryMethod]) -> str:
    return quote(json.dumps({k: v.value for k, v in prefs.items()}, separators=(",", ":")))
