"""
Pytest fixtures for timeline render tests.

Most tests replace FFmpeg with ``fake_ffmpeg``, which writes a small file to
each command's output path, and serve assets through an ``httpx.MockTransport``.

CI/CD Note:
Tests that run the real encoder are marked with @pytest.mark.requires_ffmpeg
and skipped when ffmpeg/ffprobe are not on PATH.
"""

import asyncio
import io
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest
from PIL import Image

from timeline_render.config import Settings
from timeline_render.render.context import RenderContext
from timeline_render.render.ffmpeg import FFmpegResult
from timeline_render.services.event_stream import EventChannel, ProgressReporter
from timeline_render.services.storage_service import LocalStorageService


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as needing ffmpeg and ffprobe on PATH"
    )


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def pytest_collection_modifyitems(config, items):
    """Skip encoder tests when ffmpeg is unavailable."""
    if _ffmpeg_available():
        return
    skip = pytest.mark.skip(reason="ffmpeg/ffprobe not installed")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip)


def png_bytes(color: str = "red", size: tuple[int, int] = (64, 48), image_format: str = "PNG") -> bytes:
    """Encode a solid-colour test image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def make_png():
    return png_bytes


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="timeline_render_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def job_temp_root(tmp_path, monkeypatch) -> Path:
    """Point ``tempfile`` at an isolated directory so job temp dirs can be inspected."""
    root = tmp_path / "jobs"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        use_local_storage=True,
        local_storage_path=str(tmp_path / "storage"),
        local_storage_base_url="http://testserver/api/storage/files",
        overlay_enabled=False,
        overlay_video_url="",
        upload_heartbeat_interval_s=0.01,
        sse_keepalive_interval_s=0.05,
    )


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel()


@pytest.fixture
def reporter(channel) -> ProgressReporter:
    return ProgressReporter(channel)


@pytest.fixture
def render_context(settings, reporter, tmp_path) -> RenderContext:
    """A job context whose work dir lives under the test's tmp_path."""
    work_dir = tmp_path / "work"
    context = RenderContext(
        project_id="proj-123",
        settings=settings,
        storage=LocalStorageService(settings),
        progress=reporter,
        work_dir=str(work_dir),
        job_id="testjob",
    )
    for directory in (context.assets_dir, context.chunks_dir, context.output_dir):
        os.makedirs(directory, exist_ok=True)
    return context


def _drain(channel: EventChannel) -> list:
    events = []
    while not channel._queue.empty():
        item = channel._queue.get_nowait()
        if item is not EventChannel._CLOSED:
            events.append(item)
    return events


@pytest.fixture
def drain():
    """Return every event currently queued on a channel, without waiting."""
    return _drain


# ============================================================================
# Fake FFmpeg
# ============================================================================


@dataclass
class FakeFFmpeg:
    """Records every command and writes a placeholder file to its output path."""

    calls: list[list[str]] = field(default_factory=list)
    fail_when: Optional[Callable[[list[str]], bool]] = None
    delay_s: Optional[Callable[[list[str]], float]] = None
    running: int = 0
    max_running: int = 0

    async def __call__(self, args, *, timeout=None, progress_callback=None) -> FFmpegResult:
        self.calls.append(list(args))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            delay = self.delay_s(args) if self.delay_s else 0.0
            if delay:
                await asyncio.sleep(delay)
            if self.fail_when and self.fail_when(args):
                return FFmpegResult(returncode=1, stdout="", stderr="Error: simulated failure")
            if progress_callback is not None:
                progress_callback(0.5)
            Path(args[-1]).write_bytes(b"fake video from " + os.path.basename(args[-1]).encode())
            return FFmpegResult(returncode=0, stdout="", stderr="")
        finally:
            self.running -= 1

    def outputs(self) -> list[str]:
        return [os.path.basename(call[-1]) for call in self.calls]


@pytest.fixture
def fake_ffmpeg(monkeypatch) -> FakeFFmpeg:
    fake = FakeFFmpeg()
    for module in (
        "timeline_render.render.chunk_renderer",
        "timeline_render.render.concatenator",
        "timeline_render.render.caption_burner",
    ):
        monkeypatch.setattr(f"{module}.run_ffmpeg", fake)
    monkeypatch.setattr("timeline_render.render.concatenator.get_media_duration", lambda path: 3000)
    return fake


# ============================================================================
# Fake asset server
# ============================================================================


ASSET_BASE = "http://assets.test"


@pytest.fixture
def asset_routes() -> dict[str, bytes]:
    """URL path -> response body. Paths not listed return 404."""
    return {
        "/voiceover.wav": b"RIFF fake wav",
        "/1.png": png_bytes("red"),
        "/2.png": png_bytes("green"),
        "/3.png": png_bytes("blue"),
    }


@pytest.fixture
def asset_transport(asset_routes) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        body = asset_routes.get(request.url.path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def render_payload() -> dict:
    return {
        "projectId": "proj-123",
        "audioUrl": f"{ASSET_BASE}/voiceover.wav",
        "imageUrls": [f"{ASSET_BASE}/1.png", f"{ASSET_BASE}/2.png", f"{ASSET_BASE}/3.png"],
        "imageTimings": [
            {"startSeconds": 0, "endSeconds": 1},
            {"startSeconds": 1, "endSeconds": 2},
            {"startSeconds": 2, "endSeconds": 3},
        ],
        "srtContent": "1\n00:00:00,000 --> 00:00:01,500\nHello there\n\n2\n00:00:01,500 --> 00:00:03,000\nGeneral Kenobi\n",
        "projectTitle": "Test video",
    }
