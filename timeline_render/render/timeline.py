"""
Timeline model and chunk partitioning.

A timeline is an ordered list of still images, each shown from
``start_s`` to ``end_s``, plus a voice-over track and captions. Rendering
splits it into fixed-size chunks so that each FFmpeg process only holds a
bounded number of images and chunks can be rendered in parallel.
"""

import math
import os
import re
from dataclasses import dataclass, field
from typing import Sequence, TypeVar

DEFAULT_MIN_SEGMENT_DURATION_S = 0.1

T = TypeVar("T")


@dataclass
class ImageSegment:
    """A still image held on screen for ``end_s - start_s`` seconds."""

    path: str
    start_s: float
    end_s: float

    def duration(self, min_duration_s: float = DEFAULT_MIN_SEGMENT_DURATION_S) -> float:
        """Rendered duration, floored so the encoder never sees zero or negative."""
        return max(self.end_s - self.start_s, min_duration_s)


@dataclass
class Caption:
    index: int
    start_s: float
    end_s: float
    text: str


@dataclass
class Timeline:
    """Ordered plan for the final video."""

    images: list[ImageSegment]
    audio_path: str
    captions: list[Caption] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.images:
            raise ValueError("Timeline must contain at least one image")

    @property
    def total_duration_s(self) -> float:
        """Nominal length, used for progress math only. The audio decides the real one."""
        return self.images[-1].end_s


@dataclass
class Chunk:
    """A contiguous slice of the timeline rendered as one unit."""

    index: int
    segments: list[ImageSegment]
    manifest_path: str
    raw_output_path: str
    output_path: str
    min_duration_s: float = DEFAULT_MIN_SEGMENT_DURATION_S

    @property
    def duration_s(self) -> float:
        """Summed hold time of the segments, as written to the manifest."""
        return sum(segment.duration(self.min_duration_s) for segment in self.segments)


# ============================================================================
# Partitioning
# ============================================================================


def partition(items: Sequence[T], chunk_size: int) -> list[list[T]]:
    """Split ``items`` into ``ceil(len / chunk_size)`` contiguous, non-empty slices."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    num_chunks = math.ceil(len(items) / chunk_size)
    return [list(items[i * chunk_size:(i + 1) * chunk_size]) for i in range(num_chunks)]


def escape_concat_path(path: str) -> str:
    """Quote a path for a concat demuxer ``file '...'`` line."""
    return path.replace("'", "'\\''")


def build_concat_manifest(
    segments: Sequence[ImageSegment],
    min_duration_s: float = DEFAULT_MIN_SEGMENT_DURATION_S,
) -> str:
    """Build a concat demuxer script that holds each image for its duration.

    The last image is listed a second time without a duration. The concat
    demuxer gives the final entry no end time otherwise, and the last frame
    is dropped or mistimed. A single-image chunk needs this as well. Some
    FFmpeg versions hold the repeated entry for the last duration again, so
    the compose pass caps each chunk at :attr:`Chunk.duration_s`.
    """
    if not segments:
        raise ValueError("Cannot build a concat manifest for an empty chunk")

    lines: list[str] = []
    for segment in segments:
        lines.append(f"file '{escape_concat_path(segment.path)}'")
        lines.append(f"duration {segment.duration(min_duration_s):.3f}")
    lines.append(f"file '{escape_concat_path(segments[-1].path)}'")
    return "\n".join(lines) + "\n"


def plan_chunks(
    timeline: Timeline,
    chunks_dir: str,
    chunk_size: int,
    min_duration_s: float = DEFAULT_MIN_SEGMENT_DURATION_S,
) -> list[Chunk]:
    """Partition the timeline and write one concat manifest per chunk."""
    os.makedirs(chunks_dir, exist_ok=True)
    chunks: list[Chunk] = []

    for index, segments in enumerate(partition(timeline.images, chunk_size)):
        manifest_path = os.path.join(chunks_dir, f"concat_chunk_{index:03d}.txt")
        with open(manifest_path, "w", encoding="utf-8") as f:
            f.write(build_concat_manifest(segments, min_duration_s))

        chunks.append(
            Chunk(
                index=index,
                segments=segments,
                manifest_path=manifest_path,
                raw_output_path=os.path.join(chunks_dir, f"chunk_{index:03d}_raw.mp4"),
                output_path=os.path.join(chunks_dir, f"chunk_{index:03d}.mp4"),
                min_duration_s=min_duration_s,
            )
        )

    return chunks


# ============================================================================
# SRT
# ============================================================================

_SRT_TIME = re.compile(
    r"(\d+):(\d{2}):(\d{2})[,.](\d{1,3})\s*-->\s*(\d+):(\d{2}):(\d{2})[,.](\d{1,3})"
)


def _to_seconds(h: str, m: str, s: str, ms: str) -> float:
    return int(h) * 3600 + int(m) * 60 + int(s) + int(ms.ljust(3, "0")) / 1000


def parse_srt(content: str) -> list[Caption]:
    """Parse SRT text into captions. Blocks without a timing line are skipped."""
    captions: list[Caption] = []
    blocks = re.split(r"\r?\n\s*\r?\n", content.strip())

    for block in blocks:
        lines = [line.strip() for line in block.splitlines() if line.strip()]
        for i, line in enumerate(lines):
            match = _SRT_TIME.search(line)
            if not match:
                continue
            g = match.groups()
            captions.append(
                Caption(
                    index=len(captions) + 1,
                    start_s=_to_seconds(*g[:4]),
                    end_s=_to_seconds(*g[4:]),
                    text="\n".join(lines[i + 1:]),
                )
            )
            break

    return captions
