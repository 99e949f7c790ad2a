"""
Two-pass chunk rendering.

Pass 1 composes a silent segment from a chunk's still images. Pass 2, when an
overlay video is available, screen-blends that overlay onto the segment. The
overlay is cosmetic: if Pass 2 fails or times out, the chunk keeps its Pass 1
output and the job carries on.
"""

import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional

from timeline_render.exceptions import ChunkRenderError, FFmpegError, OverlayError
from timeline_render.render.context import RenderContext
from timeline_render.render.ffmpeg import (
    FFmpegCommand,
    FilterChain,
    FilterGraph,
    h264_output_options,
    make_filter,
    run_ffmpeg,
)
from timeline_render.render.timeline import Chunk
from timeline_render.utils.aio import gather_or_cancel

logger = logging.getLogger(__name__)

ChunkProgressCallback = Callable[[int, int], None]


@dataclass
class RenderedChunk:
    path: str
    blended: bool = False


class ChunkRenderer:
    """Renders chunks to equally-encoded video segments, a bounded batch at a time."""

    def __init__(self, context: RenderContext, overlay_path: Optional[str] = None):
        self.context = context
        self.settings = context.settings
        self.overlay_path = overlay_path
        self.width = self.settings.render_output_width
        self.height = self.settings.render_output_height
        self.blended_chunks = 0

    def _encoder_options(self) -> list[str]:
        return h264_output_options(
            preset=self.settings.render_preset,
            crf=self.settings.render_crf,
            fps=self.settings.render_fps,
            threads=self.settings.render_ffmpeg_threads,
        )

    # ------------------------------------------------------------------
    # Command builders
    # ------------------------------------------------------------------

    def build_compose_command(self, chunk: Chunk) -> FFmpegCommand:
        """Pass 1: still images -> letterboxed constant-frame-rate video, no audio.

        The output is cut at the chunk's summed duration so chunks line up
        with the voice-over when joined.
        """
        cmd = FFmpegCommand(output_path=chunk.raw_output_path, binary=self.settings.ffmpeg_path)
        cmd.add_input(chunk.manifest_path, "-f", "concat", "-safe", "0")
        cmd.video_filters = FilterChain([
            make_filter("fps", self.settings.render_fps),
            make_filter("scale", self.width, self.height, force_original_aspect_ratio="decrease"),
            make_filter("pad", self.width, self.height, "(ow-iw)/2", "(oh-ih)/2", "black"),
            make_filter("setsar", 1),
        ])
        cmd.add_output_options(*self._encoder_options(), "-t", f"{chunk.duration_s:.3f}", "-an")
        return cmd

    def build_overlay_command(self, chunk: Chunk) -> FFmpegCommand:
        """Pass 2: screen-blend the looping overlay onto the Pass 1 output.

        The overlay is expanded from limited to full range first. Left in
        limited range its black is 16, not 0, and the screen blend greys the
        whole frame instead of leaving dark areas untouched.
        """
        if not self.overlay_path:
            raise ValueError("No overlay asset for this job")

        cmd = FFmpegCommand(output_path=chunk.output_path, binary=self.settings.ffmpeg_path)
        base = cmd.add_input(chunk.raw_output_path)
        overlay = cmd.add_input(self.overlay_path, "-stream_loop", "-1")

        cmd.filter_graph = (
            FilterGraph()
            .add(FilterChain(
                [
                    make_filter("scale", self.width, self.height),
                    make_filter("scale", in_range="limited", out_range="full"),
                    make_filter("format", "yuv420p"),
                ],
                inputs=[f"{overlay}:v"],
                outputs=["ov"],
            ))
            .add(FilterChain(
                [make_filter("format", "yuv420p")],
                inputs=[f"{base}:v"],
                outputs=["base"],
            ))
            .add(FilterChain(
                [
                    # shortest: the overlay loops forever, the chunk decides the length
                    make_filter("blend", all_mode="screen", shortest=1),
                    make_filter("format", "yuv420p"),
                ],
                inputs=["base", "ov"],
                outputs=["v"],
            ))
        )
        cmd.maps.append("[v]")
        cmd.add_output_options(*self._encoder_options(), "-an")
        return cmd

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def _compose(self, chunk: Chunk, total: int) -> None:
        label = f"Chunk {chunk.index + 1}/{total}"
        result = await run_ffmpeg(self.build_compose_command(chunk).to_args())
        if not result.ok:
            logger.error(f"[CHUNK] {label} FFmpeg error: {result.stderr[-2000:]}")
            raise ChunkRenderError(
                f"{label} failed",
                returncode=result.returncode,
                stderr=result.stderr,
                stage="rendering",
            )
        if not _non_empty(chunk.raw_output_path):
            raise ChunkRenderError(f"{label} produced no video", stage="rendering")

    async def _apply_overlay(self, chunk: Chunk, total: int) -> bool:
        """Run Pass 2. Returns False, never raises, when the overlay cannot be applied."""
        label = f"Chunk {chunk.index + 1}/{total}"
        try:
            result = await run_ffmpeg(
                self.build_overlay_command(chunk).to_args(),
                timeout=self.settings.overlay_timeout_s,
            )
            if not result.ok:
                raise OverlayError(
                    f"{label} overlay failed",
                    returncode=result.returncode,
                    stderr=result.stderr,
                    stage="rendering",
                )
            if not _non_empty(chunk.output_path):
                raise OverlayError(f"{label} overlay produced no video", stage="rendering")
        except (FFmpegError, OSError) as e:
            logger.warning(f"[OVERLAY] {label}: {e}. Using chunk without overlay.")
            _discard(chunk.output_path)
            return False
        return True

    async def render_chunk(self, chunk: Chunk, total: int = 1) -> RenderedChunk:
        """Render one chunk. ``blended`` tells whether the overlay made it in."""
        logger.info(
            f"[CHUNK] Rendering chunk {chunk.index + 1}/{total} "
            f"({len(chunk.segments)} images, {chunk.duration_s:.1f}s)"
        )
        await self._compose(chunk, total)

        blended = bool(self.overlay_path) and await self._apply_overlay(chunk, total)
        if blended:
            _discard(chunk.raw_output_path)
        else:
            os.replace(chunk.raw_output_path, chunk.output_path)

        logger.info(f"[CHUNK] Chunk {chunk.index + 1}/{total} complete")
        return RenderedChunk(path=chunk.output_path, blended=blended)

    async def render_all(
        self,
        chunks: list[Chunk],
        on_chunk_rendered: Optional[ChunkProgressCallback] = None,
    ) -> list[str]:
        """Render every chunk in batches of ``parallel_chunk_renders``.

        Chunks inside a batch finish in any order; the returned paths are
        always in chunk-index order. Chunks that got the overlay are counted in
        :attr:`blended_chunks`.
        """
        for position, chunk in enumerate(chunks):
            if chunk.index != position:
                raise ValueError(f"Chunk indices must be contiguous from 0, got {chunk.index} at {position}")

        self.blended_chunks = 0
        total = len(chunks)
        batch_size = max(1, self.settings.parallel_chunk_renders)
        results: list[Optional[str]] = [None] * total
        completed = 0

        async def render_one(chunk: Chunk) -> None:
            nonlocal completed
            rendered = await self.render_chunk(chunk, total)
            results[chunk.index] = rendered.path
            if rendered.blended:
                self.blended_chunks += 1
            completed += 1
            if on_chunk_rendered:
                on_chunk_rendered(completed, total)

        for start in range(0, total, batch_size):
            batch = chunks[start:start + batch_size]
            logger.info(f"[CHUNK] Starting batch: chunks {', '.join(str(c.index + 1) for c in batch)}")
            await gather_or_cancel(*(render_one(chunk) for chunk in batch))

        return [path for path in results if path is not None]


def _non_empty(path: str) -> bool:
    return os.path.exists(path) and os.path.getsize(path) > 0


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
