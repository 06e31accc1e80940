"""Quality tiers for live HLS transcoding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from stream_errors import UnknownQualityTier


QualityTier = Literal["low", "medium", "high"]

DEFAULT_QUALITY: QualityTier = "medium"


@dataclass(frozen=True, slots=True)
class QualityProfile:
    name: str
    video_bitrate: str  # ffmpeg rate string, e.g. "1000k"
    audio_bitrate: str
    width: int
    height: int
    fps: int


_PROFILES: dict[str, QualityProfile] = {
    "low": QualityProfile("low", "500k", "64k", 640, 360, 24),
    "medium": QualityProfile("medium", "1000k", "96k", 1280, 720, 30),
    "high": QualityProfile("high", "2000k", "128k", 1920, 1080, 30),
}

QUALITY_TIERS: tuple[str, ...] = tuple(_PROFILES)


def resolve(tier_name: str) -> QualityProfile:
    """Look up the fixed profile for a tier name. Raises UnknownQualityTier."""
    profile = _PROFILES.get(tier_name) if isinstance(tier_name, str) else None
    if profile is None:
        raise UnknownQualityTier(
            f"Unknown quality tier {tier_name!r} (expected one of: {', '.join(QUALITY_TIERS)})"
        )
    return profile
