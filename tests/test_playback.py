"""Playback negotiation endpoint and the preference cookie."""

from urllib.parse import parse_qs, urlsplit

from watchtower.services.negotiator import DeliveryMethod
from watchtower.services.preferences import COOKIE_NAME, encode_preferences


def test_defaults_to_direct_play(client):
    response = client.get("/playback/274036")

    assert response.status_code == 200
    data = response.json()
    assert data["method"] == "direct_play"
    assert data["directPlay"] is True
    assert data["quality"]["id"] == "original"
    assert data["offsetSeconds"] == 0
    assert len(data["availableQualities"]) == 7


def test_resume_offset_in_milliseconds(client):
    data = client.get("/playback/274036", params={"t": 125400, "quality": "720p-4"}).json()

    assert data["method"] == "transcode"
    assert data["offsetSeconds"] == 125
    query = parse_qs(urlsplit(data["streamUrl"]).query)
    assert query["offset"] == ["125"]
    assert query["videoResolution"] == ["1280x720"]


def test_forced_transcode(client):
    data = client.get("/playback/1", params={"transcode": "1"}).json()

    assert data["method"] == "transcode"
    assert data["quality"]["id"] == "original"


def test_stream_url_has_no_token(client):
    data = client.get("/playback/1").json()

    assert "X-Plex-Token" not in data["streamUrl"]
    assert data["streamUrl"].startswith("/hls/1/start.m3u8?")


def test_remembered_transcode_is_used(client):
    client.cookies.set(COOKIE_NAME, encode_preferences({"1": DeliveryMethod.TRANSCODE}))

    data = client.get("/playback/1").json()

    assert data["method"] == "transcode"


def test_explicit_quality_overrides_preference(client):
    client.cookies.set(COOKIE_NAME, encode_preferences({"1": DeliveryMethod.TRANSCODE}))

    data = client.get("/playback/1", params={"quality": "original"}).json()

    assert data["method"] == "direct_play"


def test_preference_is_stored_in_cookie(client):
    response = client.post("/playback/1/preference", json={"method": "transcode"})

    assert response.status_code == 200
    assert COOKIE_NAME in response.cookies

    data = client.get("/playback/1").json()
    assert data["method"] == "transcode"


def test_preference_rejects_unknown_method(client):
    response = client.post("/playback/1/preference", json={"method": "carrier_pigeon"})

    assert response.status_code == 400
