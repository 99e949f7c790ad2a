"""Tests for chunk concatenation, audio muxing and caption burning."""

import os
from pathlib import Path

import pytest

from timeline_render.exceptions import (
    CaptionBurnError,
    ConcatenationError,
    EmptyOutputError,
    MuxError,
)
from timeline_render.render.caption_burner import CaptionBurner
from timeline_render.render.concatenator import TimelineConcatenator, ensure_output
from timeline_render.services.event_stream import RenderStage


def _chunk_files(context, count: int) -> list[str]:
    paths = []
    for i in range(count):
        path = Path(context.chunks_dir) / f"chunk_{i:03d}.mp4"
        path.write_bytes(f"chunk {i}".encode())
        paths.append(str(path))
    return paths


class TestEnsureOutput:
    def test_returns_size(self, tmp_path):
        path = tmp_path / "out.mp4"
        path.write_bytes(b"12345")
        assert ensure_output(str(path)) == 5

    def test_empty_file(self, tmp_path):
        path = tmp_path / "out.mp4"
        path.write_bytes(b"")
        with pytest.raises(EmptyOutputError, match="FFmpeg produced empty video file"):
            ensure_output(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(EmptyOutputError):
            ensure_output(str(tmp_path / "missing.mp4"))


class TestConcatenate:
    def test_chunk_list_preserves_order(self, render_context):
        paths = _chunk_files(render_context, 3)
        list_path = TimelineConcatenator(render_context).write_chunk_list(paths)

        with open(list_path, encoding="utf-8") as f:
            assert f.read().splitlines() == [f"file '{p}'" for p in paths]

    def test_concat_is_stream_copy(self, render_context):
        args = TimelineConcatenator(render_context).build_concat_command("/w/list.txt", "/w/out.mp4").to_args()
        assert args[1:] == [
            "-hide_banner", "-y",
            "-f", "concat", "-safe", "0", "-i", "/w/list.txt",
            "-c", "copy",
            "/w/out.mp4",
        ]

    @pytest.mark.asyncio
    async def test_multiple_chunks(self, render_context, fake_ffmpeg):
        paths = _chunk_files(render_context, 3)

        output = await TimelineConcatenator(render_context).concatenate(paths)

        assert output == os.path.join(render_context.output_dir, "concatenated.mp4")
        assert len(fake_ffmpeg.calls) == 1
        assert os.path.getsize(output) > 0

    @pytest.mark.asyncio
    async def test_single_chunk_is_copied(self, render_context, fake_ffmpeg):
        paths = _chunk_files(render_context, 1)

        output = await TimelineConcatenator(render_context).concatenate(paths)

        assert fake_ffmpeg.calls == []
        with open(output, "rb") as f:
            assert f.read() == b"chunk 0"

    @pytest.mark.asyncio
    async def test_failure(self, render_context, fake_ffmpeg):
        fake_ffmpeg.fail_when = lambda args: True
        with pytest.raises(ConcatenationError, match="Chunk concatenation failed"):
            await TimelineConcatenator(render_context).concatenate(_chunk_files(render_context, 2))

    @pytest.mark.asyncio
    async def test_no_chunks(self, render_context, fake_ffmpeg):
        with pytest.raises(ConcatenationError):
            await TimelineConcatenator(render_context).concatenate([])


class TestMuxAudio:
    def test_mux_command(self, render_context):
        args = TimelineConcatenator(render_context).build_mux_command(
            "/w/video.mp4", "/w/voice.mp3", "/w/final.mp4"
        ).to_args()

        assert args[1:] == [
            "-hide_banner", "-y",
            "-i", "/w/video.mp4",
            "-i", "/w/voice.mp3",
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "copy",
            "-c:a", "aac",
            "-ar", "48000",
            "-b:a", "192k",
            "-shortest",
            "-movflags", "+faststart",
            "/w/final.mp4",
        ]

    @pytest.mark.asyncio
    async def test_mux(self, render_context, fake_ffmpeg):
        output = await TimelineConcatenator(render_context).mux_audio("/w/video.mp4", "/w/voice.wav")
        assert output == os.path.join(render_context.output_dir, "with_audio.mp4")

    @pytest.mark.asyncio
    async def test_mux_failure(self, render_context, fake_ffmpeg):
        fake_ffmpeg.fail_when = lambda args: True
        with pytest.raises(MuxError, match="Audio muxing failed"):
            await TimelineConcatenator(render_context).mux_audio("/w/video.mp4", "/w/voice.wav")


class TestCaptionBurner:
    def test_command(self, render_context):
        args = CaptionBurner(render_context).build_command("/w/in.mp4", "/w/cap.srt", "/w/out.mp4").to_args()

        vf = args[args.index("-vf") + 1]
        assert vf.startswith(r"subtitles=filename=/w/cap.srt:force_style=FontSize=28\,")
        assert args[args.index("-preset") + 1] == "fast"
        assert args[args.index("-c:a") + 1] == "copy"
        assert args[-1] == "/w/out.mp4"

    @pytest.mark.asyncio
    async def test_burn_writes_srt_and_reports_progress(self, render_context, fake_ffmpeg, channel, drain):
        render_context.progress.enter(RenderStage.CAPTIONING, 82, "Burning in captions...")
        srt = "1\n00:00:00,000 --> 00:00:01,000\nHi\n"

        output = await CaptionBurner(render_context).burn("/w/in.mp4", srt, total_duration_s=1.0)

        assert output == os.path.join(render_context.output_dir, "output_captioned.mp4")
        with open(os.path.join(render_context.output_dir, "captions.srt"), encoding="utf-8") as f:
            assert f.read() == srt
        percents = [e.percent for e in drain(channel)]
        # fake encoder reports 0.5s of 1.0s
        assert percents == [82, 87]

    @pytest.mark.asyncio
    async def test_burn_failure(self, render_context, fake_ffmpeg):
        fake_ffmpeg.fail_when = lambda args: True
        with pytest.raises(CaptionBurnError):
            await CaptionBurner(render_context).burn("/w/in.mp4", "1\n", total_duration_s=1.0)
