"""
Stream negotiation - decides how a title is delivered.

Pure and synchronous: the same function is used by the playback endpoint and
by the player when it renegotiates locally after a seek or a failure.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

from watchtower.config import settings
from watchtower.constants import CLIENT_HEADERS


class DeliveryMethod(str, Enum):
    DIRECT_PLAY = "direct_play"  # unmodified file
    TRANSCODE = "transcode"      # re-encoded by the media server


@dataclass(frozen=True)
class QualityProfile:
    """A named delivery target. Bitrate is in kbps."""
    id: str
    label: str
    resolution: Optional[str] = None
    max_bitrate: Optional[int] = None
    is_original: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "resolution": self.resolution,
            "maxBitrate": self.max_bitrate,
            "isOriginal": self.is_original,
        }


QUALITY_PROFILES: Tuple[QualityProfile, ...] = (
    QualityProfile("original", "Original", is_original=True),
    QualityProfile("1080p-20", "1080p (20 Mbps)", "1080p", 20000),
    QualityProfile("1080p-12", "1080p (12 Mbps)", "1080p", 12000),
    QualityProfile("1080p-8", "1080p (8 Mbps)", "1080p", 8000),
    QualityProfile("720p-4", "720p (4 Mbps)", "720p", 4000),
    QualityProfile("720p-2", "720p (2 Mbps)", "720p", 2000),
    QualityProfile("480p-1.5", "480p (1.5 Mbps)", "480p", 1500),
)

RESOLUTIONS: Dict[str, str] = {
    "1080p": "1920x1080",
    "720p": "1280x720",
    "480p": "854x480",
}

HLS_MIME = "application/vnd.apple.mpegurl"


@dataclass(frozen=True)
class StreamDescriptor:
    """Result of one negotiation. Never mutated; renegotiate instead."""
    url: str
    method: DeliveryMethod
    quality: QualityProfile
    params: Tuple[Tuple[str, str], ...]
    offset_seconds: int = 0
    protocol: str = "hls"
    available_qualities: Tuple[QualityProfile, ...] = field(default=QUALITY_PROFILES)

    @property
    def is_direct_play(self) -> bool:
        return self.method is DeliveryMethod.DIRECT_PLAY

    @property
    def query(self) -> Dict[str, str]:
        return dict(self.params)

    def to_dict(self) -> dict:
        return {
            "streamUrl": self.url,
            "protocol": self.protocol,
            "method": self.method.value,
            "directPlay": self.is_direct_play,
            "directStream": self.is_direct_play,
            "offsetSeconds": self.offset_seconds,
            "quality": self.quality.to_dict(),
            "availableQualities": [q.to_dict() for q in self.available_qualities],
        }


def resolve_quality(quality_id: Optional[str]) -> QualityProfile:
    """Look up a profile by id, falling back to the original profile."""
    for profile in QUALITY_PROFILES:
        if profile.id == quality_id:
            return profile
    return QUALITY_PROFILES[0]


def build_stream_descriptor(
    title_id: str,
    offset_seconds: float = 0,
    quality: Optional[QualityProfile] = None,
    force_reencode: bool = False,
    base_url: str = "/hls",
    client_id: Optional[str] = None,
) -> StreamDescriptor:
    """
    Build the request for the media server's universal transcode endpoint.

    Direct play is used iff the profile is the original and re-encoding is
    not forced. The URL never carries the access token; the HLS proxy adds
    it on the server.
    """
    selected = quality or QUALITY_PROFILES[0]
    direct = selected.is_original and not force_reencode

    params = [
        ("path", f"/library/metadata/{title_id}"),
        ("protocol", "hls"),
        ("copyts", "1"),
        ("mediaIndex", "0"),
        ("partIndex", "0"),
    ]

    if direct:
        params += [
            ("directPlay", "1"),
            ("directStream", "1"),
            ("directStreamAudio", "1"),
        ]
    else:
        params += [
            ("directPlay", "0"),
            ("directStream", "0"),
            ("videoCodec", "h264"),
            ("audioCodec", "aac"),
            ("context", "streaming"),
        ]
        if selected.max_bitrate:
            params.append(("videoBitrate", str(selected.max_bitrate)))
            params.append(("maxVideoBitrate", str(selected.max_bitrate)))
        if selected.resolution in RESOLUTIONS:
            params.append(("videoResolution", RESOLUTIONS[selected.resolution]))

    # The media server expects whole seconds
    offset = int(offset_seconds) if offset_seconds > 0 else 0
    if offset > 0:
        params.append(("offset", str(offset)))

    params.append(("X-Plex-Client-Identifier", client_id or settings.client_id))
    params += list(CLIENT_HEADERS.items())

    url = f"{base_url.rstrip('/')}/{title_id}/start.m3u8?{urlencode(params)}"

    return StreamDescriptor(
        url=url,
        method=DeliveryMethod.DIRECT_PLAY if direct else DeliveryMethod.TRANSCODE,
        quality=selected,
        params=tuple(params),
        offset_seconds=offset,
    )
