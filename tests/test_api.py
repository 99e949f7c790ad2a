"""Tests for the HTTP surface: the SSE render endpoint, health and local file serving."""

import json
import os

import pytest
from fastapi.testclient import TestClient

from timeline_render.api.render import _job_events
from timeline_render.config import get_settings
from timeline_render.main import app
from timeline_render.schemas.render import RenderVideoRequest
from timeline_render.services.asset_fetcher import AssetFetcher


def _events(body: str) -> list[dict]:
    """Parse ``data:`` frames from an SSE body, skipping comments."""
    frames = [frame for frame in body.split("\n\n") if frame.strip()]
    return [json.loads(frame[len("data: "):]) for frame in frames if frame.startswith("data: ")]


@pytest.fixture
def client(settings):
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def mock_assets(monkeypatch, asset_transport):
    monkeypatch.setattr(
        "timeline_render.render.pipeline.AssetFetcher",
        lambda settings: AssetFetcher(settings, transport=asset_transport),
    )


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_version(self, client):
        assert "version" in client.get("/api/version").json()


class TestRenderVideo:
    def test_streams_progress_then_complete(self, client, mock_assets, fake_ffmpeg, render_payload, job_temp_root):
        response = client.post("/render-video", json=render_payload)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"

        events = _events(response.text)
        assert events[0] == {"type": "progress", "stage": "downloading", "percent": 5, "message": "Downloading assets..."}
        assert events[-1]["type"] == "complete"
        assert events[-1]["videoUrl"].endswith("/projects/proj-123/renders/video.mp4")
        assert [e["type"] for e in events].count("complete") == 1
        assert os.listdir(job_temp_root) == []

    def test_timing_mismatch_is_single_error_event(self, client, fake_ffmpeg, render_payload, job_temp_root):
        render_payload["imageTimings"] = render_payload["imageTimings"][:1]

        response = client.post("/render-video", json=render_payload)

        assert response.status_code == 200
        assert _events(response.text) == [{"type": "error", "error": "Image timings must match image count"}]
        assert fake_ffmpeg.calls == []
        assert os.listdir(job_temp_root) == []

    def test_missing_fields(self, client, fake_ffmpeg, job_temp_root):
        response = client.post("/render-video", json={"projectId": "p"})
        assert _events(response.text) == [{"type": "error", "error": "Missing required fields"}]
        assert os.listdir(job_temp_root) == []

    def test_wrong_field_type(self, client, render_payload):
        render_payload["imageUrls"] = "not-a-list"

        events = _events(client.post("/render-video", json=render_payload).text)

        assert len(events) == 1
        assert events[0]["type"] == "error"
        assert events[0]["error"].startswith("Invalid request: imageUrls")

    def test_invalid_json(self, client):
        response = client.post(
            "/render-video", content=b"{not json", headers={"content-type": "application/json"}
        )
        assert _events(response.text) == [{"type": "error", "error": "Invalid JSON body"}]

    def test_download_failure_reported_on_stream(self, client, mock_assets, fake_ffmpeg, asset_routes, render_payload):
        del asset_routes["/voiceover.wav"]

        events = _events(client.post("/render-video", json=render_payload).text)

        assert events[-1] == {
            "type": "error",
            "error": "Failed to download http://assets.test/voiceover.wav: 404",
        }


class TestClientDisconnect:
    @pytest.mark.asyncio
    async def test_closing_stream_waits_for_job_cleanup(
        self, settings, mock_assets, fake_ffmpeg, render_payload, job_temp_root
    ):
        fake_ffmpeg.delay_s = lambda args: 60.0
        frames = _job_events(RenderVideoRequest.model_validate(render_payload), settings)

        frame = await frames.__anext__()
        while not frame.startswith("data: "):
            frame = await frames.__anext__()
        assert json.loads(frame[len("data: "):])["stage"] == "downloading"
        assert len(os.listdir(job_temp_root)) == 1

        await frames.aclose()

        assert os.listdir(job_temp_root) == []
        assert fake_ffmpeg.running == 0


class TestLocalStorageFiles:
    def test_serves_rendered_video(self, client, settings):
        path = os.path.join(settings.local_storage_path, "projects", "p1", "renders", "video.mp4")
        os.makedirs(os.path.dirname(path))
        with open(path, "wb") as f:
            f.write(b"mp4 bytes")

        response = client.get("/api/storage/files/projects/p1/renders/video.mp4")

        assert response.status_code == 200
        assert response.content == b"mp4 bytes"
        assert response.headers["content-type"] == "video/mp4"

    def test_missing_file(self, client):
        assert client.get("/api/storage/files/projects/p1/renders/nope.mp4").status_code == 404

    def test_disabled_without_local_storage(self, client, settings):
        settings.use_local_storage = False
        assert client.get("/api/storage/files/projects/p1/renders/video.mp4").status_code == 404
