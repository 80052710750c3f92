"""Playlist URI rewriting for the HLS proxy."""

from watchtower.services.playlist import rewrite_playlist, rewrite_uri, strip_token

BASE = "https://watch.example/hls/42"


def test_transcoder_path_is_mapped_onto_proxy():
    uri = "/video/:/transcode/universal/session/abc/base/00001.ts"
    assert rewrite_uri(uri, BASE) == f"{BASE}/session/abc/base/00001.ts"


def test_alternate_transcoder_prefix():
    uri = "/video:/transcode/universal/session/abc/index.m3u8"
    assert rewrite_uri(uri, BASE) == f"{BASE}/session/abc/index.m3u8"


def test_absolute_upstream_url_is_rewritten():
    uri = "http://plex:32400/video/:/transcode/universal/session/abc/00001.ts?X-Plex-Token=t&a=1"
    assert rewrite_uri(uri, BASE) == f"{BASE}/session/abc/00001.ts?a=1"


def test_relative_uri_is_untouched():
    assert rewrite_uri("00001.ts", BASE) == "00001.ts"


def test_strip_token():
    assert strip_token("a.ts?X-Plex-Token=t") == "a.ts"
    assert strip_token("a.ts?b=2&X-Plex-Token=t") == "a.ts?b=2"
    assert strip_token("a.ts?b=2") == "a.ts?b=2"


def test_master_playlist_variants_and_renditions():
    content = """#EXTM3U
#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="aud",NAME="English",URI="/video/:/transcode/universal/session/abc/audio.m3u8"
#EXT-X-STREAM-INF:BANDWIDTH=4000000,AUDIO="aud"
/video/:/transcode/universal/session/abc/base/index.m3u8
"""

    rewritten = rewrite_playlist(content, "42", "https://watch.example")

    assert f"{BASE}/session/abc/base/index.m3u8" in rewritten
    assert f'URI="{BASE}/session/abc/audio.m3u8"' in rewritten


def test_media_playlist_init_section_and_key():
    content = """#EXTM3U
#EXT-X-VERSION:7
#EXT-X-TARGETDURATION:4
#EXT-X-MAP:URI="/video/:/transcode/universal/session/abc/init.mp4"
#EXT-X-KEY:METHOD=AES-128,URI="/video/:/transcode/universal/session/abc/key"
#EXTINF:4.0,
/video/:/transcode/universal/session/abc/0.m4s
#EXTINF:4.0,
/video/:/transcode/universal/session/abc/1.m4s
#EXT-X-ENDLIST
"""

    rewritten = rewrite_playlist(content, "42", "https://watch.example")

    assert f'URI="{BASE}/session/abc/init.mp4"' in rewritten
    assert f'URI="{BASE}/session/abc/key"' in rewritten
    assert f"{BASE}/session/abc/0.m4s" in rewritten
    assert f"{BASE}/session/abc/1.m4s" in rewritten
    assert "/video/:/transcode" not in rewritten
