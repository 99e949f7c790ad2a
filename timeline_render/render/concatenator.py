import asyncio
import logging
import os
import shutil
from typing import Optional

from timeline_render.exceptions import ConcatenationError, EmptyOutputError, MuxError
from timeline_render.render.context import RenderContext
from timeline_render.render.ffmpeg import FFmpegCommand, run_ffmpeg
from timeline_render.render.timeline import escape_concat_path
from timeline_render.utils.media_info import get_media_duration

logger = logging.getLogger(__name__)


def ensure_output(path: str) -> int:
    """Return the size of a freshly written output, failing on a missing or empty file."""
    if not os.path.exists(path):
        raise EmptyOutputError(f"FFmpeg produced no output file: {os.path.basename(path)}")
    size = os.path.getsize(path)
    if size == 0:
        raise EmptyOutputError()
    return size


class TimelineConcatenator:
    """Joins rendered chunks and adds the voice-over.

    Concatenation is a stream copy, valid only because every chunk was
    encoded with identical codec, resolution and frame rate settings.
    """

    def __init__(self, context: RenderContext):
        self.context = context
        self.settings = context.settings

    def write_chunk_list(self, chunk_paths: list[str]) -> str:
        """Write the concat demuxer list, one ``file`` line per chunk, in order."""
        list_path = os.path.join(self.context.output_dir, "chunks_list.txt")
        with open(list_path, "w", encoding="utf-8") as f:
            for chunk_path in chunk_paths:
                f.write(f"file '{escape_concat_path(chunk_path)}'\n")
        return list_path

    def build_concat_command(self, list_path: str, output_path: str) -> FFmpegCommand:
        cmd = FFmpegCommand(output_path=output_path, binary=self.settings.ffmpeg_path)
        cmd.add_input(list_path, "-f", "concat", "-safe", "0")
        cmd.add_output_options("-c", "copy")
        return cmd

    def build_mux_command(self, video_path: str, audio_path: str, output_path: str) -> FFmpegCommand:
        """Video copied verbatim, audio re-encoded, length capped to the shorter stream."""
        cmd = FFmpegCommand(output_path=output_path, binary=self.settings.ffmpeg_path)
        video = cmd.add_input(video_path)
        audio = cmd.add_input(audio_path)
        cmd.maps.extend([f"{video}:v:0", f"{audio}:a:0"])
        cmd.add_output_options(
            "-c:v", "copy",
            "-c:a", self.settings.render_audio_codec,
            "-ar", self.settings.render_audio_sample_rate,
            "-b:a", self.settings.render_audio_bitrate,
            "-shortest",
            "-movflags", "+faststart",
        )
        return cmd

    async def concatenate(self, chunk_paths: list[str], output_path: Optional[str] = None) -> str:
        """Concatenate chunk files, in the given order, into one silent video."""
        if not chunk_paths:
            raise ConcatenationError("No chunks to concatenate", stage="concatenating")

        output_path = output_path or os.path.join(self.context.output_dir, "concatenated.mp4")

        if len(chunk_paths) == 1:
            # Single chunk - just copy
            await asyncio.to_thread(shutil.copy2, chunk_paths[0], output_path)
            ensure_output(output_path)
            return output_path

        list_path = self.write_chunk_list(chunk_paths)
        cmd = self.build_concat_command(list_path, output_path).to_args()
        logger.info(f"[CONCAT] Concatenation command: {' '.join(cmd)}")

        result = await run_ffmpeg(cmd)
        if not result.ok:
            logger.error(f"[CONCAT] Concatenation failed: {result.stderr[-2000:]}")
            raise ConcatenationError(
                "Chunk concatenation failed",
                returncode=result.returncode,
                stderr=result.stderr,
                stage="concatenating",
            )

        size = ensure_output(output_path)
        logger.info(f"[CONCAT] Concatenated {len(chunk_paths)} chunks ({size / 1024 / 1024:.2f} MB)")
        return output_path

    async def mux_audio(
        self, video_path: str, audio_path: str, output_path: Optional[str] = None
    ) -> str:
        """Add the voice-over track to the concatenated video."""
        output_path = output_path or os.path.join(self.context.output_dir, "with_audio.mp4")
        cmd = self.build_mux_command(video_path, audio_path, output_path).to_args()
        logger.info(f"[MUX] Audio mux command: {' '.join(cmd)}")

        result = await run_ffmpeg(cmd)
        if not result.ok:
            logger.error(f"[MUX] Audio mux failed: {result.stderr[-2000:]}")
            raise MuxError(
                "Audio muxing failed",
                returncode=result.returncode,
                stderr=result.stderr,
                stage="muxing",
            )

        size = ensure_output(output_path)
        try:
            duration_ms = await asyncio.to_thread(get_media_duration, output_path)
            logger.info(f"[MUX] Video with audio: {size / 1024 / 1024:.2f} MB, {duration_ms / 1000:.2f}s")
        except RuntimeError as e:
            logger.warning(f"[MUX] Could not probe muxed duration: {e}")
        return output_path
