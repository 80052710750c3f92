"""Data models for Watchtower - request bodies for the player endpoints."""

from typing import Literal
from pydantic import BaseModel, ConfigDict, Field


class TimelineRequest(BaseModel):
    """A playback position report from the player."""
    model_config = ConfigDict(populate_by_name=True)

    title_id: str = Field(alias="titleId", min_length=1)
    state: Literal["playing", "paused", "stopped"]
    position_ms: int = Field(alias="positionMs", ge=0)
    duration_ms: int = Field(alias="durationMs", gt=0)


class WatchedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title_id: str = Field(alias="titleId", min_length=1)


class PreferenceRequest(BaseModel):
    method: Literal["direct_play", "transcode"]
