"""Optional pass that burns SRT captions into a re-encoded copy of the final video."""

import logging
import os

from timeline_render.exceptions import CaptionBurnError
from timeline_render.render.concatenator import ensure_output
from timeline_render.render.context import RenderContext
from timeline_render.render.ffmpeg import FFmpegCommand, FilterChain, make_filter, run_ffmpeg

logger = logging.getLogger(__name__)

CAPTION_PERCENT_START = 82
CAPTION_PERCENT_END = 92


class CaptionBurner:
    def __init__(self, context: RenderContext):
        self.context = context
        self.settings = context.settings

    def write_srt(self, srt_content: str) -> str:
        srt_path = os.path.join(self.context.output_dir, "captions.srt")
        with open(srt_path, "w", encoding="utf-8") as f:
            f.write(srt_content)
        return srt_path

    def build_command(self, video_path: str, srt_path: str, output_path: str) -> FFmpegCommand:
        cmd = FFmpegCommand(output_path=output_path, binary=self.settings.ffmpeg_path)
        cmd.add_input(video_path)
        cmd.video_filters = FilterChain([
            make_filter(
                "subtitles",
                filename=srt_path,
                force_style=self.settings.caption_force_style,
            ),
        ])
        cmd.add_output_options(
            "-threads", self.settings.render_ffmpeg_threads,
            "-c:v", "libx264",
            "-preset", self.settings.caption_preset,
            "-crf", self.settings.render_crf,
            "-pix_fmt", "yuv420p",
            "-c:a", "copy",
            "-movflags", "+faststart",
        )
        return cmd

    async def burn(self, video_path: str, srt_content: str, total_duration_s: float) -> str:
        """Burn captions and return the captioned file path.

        Raises:
            CaptionBurnError: FFmpeg failed. Callers treat this as non-fatal.
        """
        srt_path = self.write_srt(srt_content)
        output_path = os.path.join(self.context.output_dir, "output_captioned.mp4")
        progress = self.context.progress
        last_percent = CAPTION_PERCENT_START

        def on_progress(out_time_s: float) -> None:
            nonlocal last_percent
            if total_duration_s <= 0:
                return
            span = CAPTION_PERCENT_END - CAPTION_PERCENT_START
            percent = CAPTION_PERCENT_START + round(out_time_s / total_duration_s * span)
            if percent <= last_percent:
                return
            last_percent = percent
            minutes, seconds = divmod(int(out_time_s), 60)
            progress.report(
                min(percent, CAPTION_PERCENT_END),
                f"Burning captions: {minutes // 60:02d}:{minutes % 60:02d}:{seconds:02d}",
            )

        cmd = self.build_command(video_path, srt_path, output_path).to_args()
        logger.info(f"[CAPTIONS] Subtitle burn command: {' '.join(cmd)}")
        result = await run_ffmpeg(cmd, progress_callback=on_progress)
        if not result.ok:
            raise CaptionBurnError(
                "Caption burning failed",
                returncode=result.returncode,
                stderr=result.stderr,
                stage="captioning",
            )

        ensure_output(output_path)
        return output_path
