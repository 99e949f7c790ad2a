"""ffprobe helpers for checking rendered output."""

import json
import subprocess
from dataclasses import dataclass
from typing import Optional

from timeline_render.config import get_settings


@dataclass
class MediaProbe:
    """The parts of an ffprobe report the render pipeline cares about."""

    duration_ms: Optional[int]
    width: Optional[int] = None
    height: Optional[int] = None
    has_audio: bool = False


def _ffprobe_json(file_path: str) -> dict:
    ffprobe = get_settings().ffprobe_path
    try:
        result = subprocess.run(
            [ffprobe, "-v", "error", "-print_format", "json", "-show_format", "-show_streams", file_path],
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as e:
        raise RuntimeError(f"ffprobe not found: {ffprobe}") from e
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed for {file_path}: {result.stderr.strip()}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}") from e


def probe_media(file_path: str) -> MediaProbe:
    """Probe a media file with a single ffprobe call.

    Raises:
        RuntimeError: ffprobe is missing, failed, or printed something unparsable.
    """
    data = _ffprobe_json(file_path)
    duration = data.get("format", {}).get("duration")
    streams = data.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), {})

    return MediaProbe(
        duration_ms=int(float(duration) * 1000) if duration else None,
        width=video.get("width"),
        height=video.get("height"),
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
    )


def get_media_duration(file_path: str) -> int:
    """Duration in milliseconds. Raises RuntimeError when ffprobe reports none."""
    duration_ms = probe_media(file_path).duration_ms
    if duration_ms is None:
        raise RuntimeError(f"Duration not found in: {file_path}")
    return duration_ms
