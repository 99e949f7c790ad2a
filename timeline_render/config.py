import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Timeline Render API"
    app_version: str = "0.1.0"
    git_hash: str = "unknown"  # Set via GIT_HASH env var at build time
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Google Cloud Storage
    gcs_bucket_name: str = "generated-assets"
    gcs_project_id: str = ""

    # Local storage for development (when GCS is not configured)
    use_local_storage: bool = True  # Set to False in production
    local_storage_path: str = "/tmp/timeline-render-storage"
    local_storage_base_url: str = "http://localhost:8000/api/storage/files"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Pipe-separated for Cloud Run compatibility
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render settings
    render_output_width: int = 1920
    render_output_height: int = 1080
    render_fps: int = 30
    render_preset: str = "veryfast"  # intermediate chunks favour throughput
    render_crf: int = 23
    render_ffmpeg_threads: int = 0  # 0 = let FFmpeg use every core
    render_audio_codec: str = "aac"
    render_audio_bitrate: str = "192k"
    render_audio_sample_rate: int = 48000

    # Chunked rendering
    images_per_chunk: int = 25
    # Concurrent chunk renders; each chunk may run two FFmpeg passes
    parallel_chunk_renders: int = 2
    min_segment_duration_s: float = 0.1

    # Overlay (screen-blended looping video, e.g. embers)
    overlay_enabled: bool = True
    overlay_video_url: str = ""
    overlay_timeout_s: float = 120.0

    # Caption burning
    caption_preset: str = "fast"
    caption_force_style: str = (
        "FontSize=28,PrimaryColour=&HFFFFFF,OutlineColour=&H000000,"
        "BorderStyle=3,Outline=2,Shadow=1,Alignment=2,MarginV=50"
    )

    # Asset downloads
    download_timeout_s: float = 120.0
    download_concurrency: int = 4

    # Event stream
    sse_keepalive_interval_s: float = 5.0
    upload_heartbeat_interval_s: float = 3.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
