"""FFmpeg command building for live HLS sessions and connectivity probes."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import logging
import pathlib

from quality import QualityProfile


log = logging.getLogger(__name__)

# HLS output
SEG_PREFIX = "segment"  # Segment files are named segment000.ts, segment001.ts, etc.
PLAYLIST_NAME = "stream.m3u8"
_HLS_SEGMENT_DURATION_SEC = 2
_HLS_LIST_SIZE = 3

# Input analysis budget (bytes / microseconds)
_SESSION_ANALYZE = "3000000"
_PROBE_ANALYZE = "2000000"
_PROBE_DURATION_SEC = 2

# Module state
_load_settings: Callable[[], dict[str, Any]] = dict


def init(load_settings: Callable[[], dict[str, Any]]) -> None:
    """Initialize module with settings loader."""
    global _load_settings
    _load_settings = load_settings


def get_settings() -> dict[str, Any]:
    """Get current settings."""
    return _load_settings()


def get_ffmpeg_path() -> str:
    """Get the ffmpeg executable, defaulting to the one on PATH."""
    return get_settings().get("ffmpeg_path") or "ffmpeg"


def get_hls_dir() -> pathlib.Path:
    """Get the HLS output directory (not created here)."""
    custom_dir = get_settings().get("hls_dir", "")
    if custom_dir:
        return pathlib.Path(custom_dir)
    return pathlib.Path(__file__).parent / "hls"


def _scale_pad_filter(width: int, height: int) -> str:
    """Fit inside width x height keeping aspect ratio, letterbox the rest."""
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
    )


def _input_args(source_address: str, analyze: str) -> list[str]:
    return [
        "-rtsp_transport",
        "tcp",
        "-analyzeduration",
        analyze,
        "-probesize",
        analyze,
        "-i",
        source_address,
    ]


def build_hls_ffmpeg_cmd(
    source_address: str,
    profile: QualityProfile,
    output_dir: str | pathlib.Path,
    ffmpeg_path: str | None = None,
) -> list[str]:
    """Build ffmpeg command for live HLS transcoding of a network source."""
    output_dir = pathlib.Path(output_dir)
    cmd = [
        ffmpeg_path or get_ffmpeg_path(),
        "-hide_banner",
        "-nostdin",
        "-nostats",
        "-loglevel",
        "error",
    ]

    # Input args
    cmd.extend(["-max_delay", "500000"])
    cmd.extend(_input_args(source_address, _SESSION_ANALYZE))

    # Video: low-latency baseline H.264 for broad player support
    cmd.extend(
        [
            "-c:v",
            "libx264",
            "-preset",
            "ultrafast",
            "-tune",
            "zerolatency",
            "-profile:v",
            "baseline",
            "-level",
            "3.0",
            "-b:v",
            profile.video_bitrate,
            "-maxrate",
            profile.video_bitrate,
            "-bufsize",
            "1M",
            "-g",
            "60",
            "-keyint_min",
            "30",
            "-sc_threshold",
            "0",
            "-r",
            str(profile.fps),
            "-vf",
            _scale_pad_filter(profile.width, profile.height),
        ]
    )

    # Audio
    cmd.extend(["-c:a", "aac", "-b:a", profile.audio_bitrate, "-ar", "44100", "-ac", "2"])

    # HLS output args
    cmd.extend(
        [
            "-f",
            "hls",
            "-hls_time",
            str(_HLS_SEGMENT_DURATION_SEC),
            "-hls_list_size",
            str(_HLS_LIST_SIZE),
            "-hls_flags",
            "delete_segments",
            "-hls_segment_type",
            "mpegts",
            "-hls_segment_filename",
            str(output_dir / f"{SEG_PREFIX}%03d.ts"),
            "-start_number",
            "0",
            str(output_dir / PLAYLIST_NAME),
        ]
    )
    return cmd


def build_probe_cmd(source_address: str, ffmpeg_path: str | None = None) -> list[str]:
    """Build a short trial ffmpeg run that decodes a couple of seconds and discards it."""
    cmd = [
        ffmpeg_path or get_ffmpeg_path(),
        "-hide_banner",
        "-nostdin",
        "-nostats",
        "-loglevel",
        "error",
    ]
    cmd.extend(_input_args(source_address, _PROBE_ANALYZE))
    cmd.extend(["-t", str(_PROBE_DURATION_SEC), "-f", "null", "-"])
    return cmd
