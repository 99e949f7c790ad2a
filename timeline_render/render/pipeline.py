"""
Main render pipeline for timeline videos.

This module orchestrates the entire rendering process:
1. Download the voice-over, images and optional overlay
2. Partition the image timeline into chunks
3. Render chunks in parallel batches (compose + optional overlay blend)
4. Concatenate chunks and mux in the voice-over
5. Upload the result, then optionally burn in captions and upload that too

Every job runs in its own temp directory, which is removed whether the job
completes or fails. The caller always receives exactly one terminal event.
"""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Optional

from timeline_render.config import Settings, get_settings
from timeline_render.exceptions import EmptyOutputError, FFmpegError, UploadError
from timeline_render.render.caption_burner import CaptionBurner
from timeline_render.render.chunk_renderer import ChunkRenderer
from timeline_render.render.concatenator import TimelineConcatenator
from timeline_render.render.context import RenderContext
from timeline_render.render.publisher import PublishedVideo, Publisher
from timeline_render.render.timeline import ImageSegment, Timeline, parse_srt, plan_chunks
from timeline_render.schemas.render import RenderVideoRequest
from timeline_render.services.asset_fetcher import AssetFetcher, url_extension
from timeline_render.services.event_stream import EventChannel, ProgressReporter, RenderStage
from timeline_render.services.storage_service import StorageService, get_storage_service

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    video: PublishedVideo
    chunk_count: int
    overlay_chunks: int = 0
    captioned: Optional[PublishedVideo] = None
    caption_error: Optional[str] = None

    @property
    def overlay_applied(self) -> bool:
        return self.overlay_chunks > 0


class RenderPipeline:
    """Runs one render job against a prepared :class:`RenderContext`."""

    def __init__(self, context: RenderContext, fetcher: Optional[AssetFetcher] = None):
        self.context = context
        self.settings = context.settings
        self.progress = context.progress
        self.fetcher = fetcher or AssetFetcher(context.settings)

    def _overlay_requested(self, request: RenderVideoRequest) -> bool:
        enabled = request.overlay_enabled
        if enabled is None:
            enabled = self.settings.overlay_enabled
        return enabled and bool(self.settings.overlay_video_url)

    async def _download_assets(self, request: RenderVideoRequest) -> tuple[str, list[str], Optional[str]]:
        self.progress.enter(RenderStage.DOWNLOADING, 5, "Downloading assets...")
        assets_dir = self.context.assets_dir

        audio_path = os.path.join(assets_dir, "voiceover" + url_extension(request.audio_url, ".wav"))
        await self.fetcher.download(request.audio_url, audio_path)
        logger.info("[ASSETS] Audio downloaded")

        def on_image(done: int, total: int) -> None:
            self.progress.report(5 + round(done / total * 20), f"Downloaded image {done}/{total}")

        image_paths = await self.fetcher.download_images(request.image_urls, assets_dir, on_image)
        logger.info(f"[ASSETS] All {len(image_paths)} images downloaded")

        overlay_path = None
        if self._overlay_requested(request):
            overlay_url = self.settings.overlay_video_url
            overlay_path = await self.fetcher.download_optional(
                overlay_url,
                os.path.join(assets_dir, "overlay" + url_extension(overlay_url, ".mp4")),
            )
        return audio_path, image_paths, overlay_path

    @staticmethod
    def build_timeline(
        request: RenderVideoRequest, image_paths: list[str], audio_path: str
    ) -> Timeline:
        return Timeline(
            images=[
                ImageSegment(path=path, start_s=timing.start_seconds, end_s=timing.end_seconds)
                for path, timing in zip(image_paths, request.image_timings)
            ],
            audio_path=audio_path,
            captions=parse_srt(request.srt_content) if request.srt_content else [],
        )

    async def run(self, request: RenderVideoRequest) -> RenderResult:
        settings = self.settings
        progress = self.progress

        # Stage 1: Download
        audio_path, image_paths, overlay_path = await self._download_assets(request)

        # Stage 2: Partition
        progress.enter(RenderStage.PREPARING, 30, "Preparing timeline...")
        timeline = self.build_timeline(request, image_paths, audio_path)
        chunks = plan_chunks(
            timeline,
            self.context.chunks_dir,
            settings.images_per_chunk,
            settings.min_segment_duration_s,
        )
        logger.info(
            f"[RENDER] Processing {len(timeline.images)} images in {len(chunks)} chunk(s) "
            f"of up to {settings.images_per_chunk} images each "
            f"({settings.parallel_chunk_renders} parallel), "
            f"{len(timeline.captions)} captions, overlay={'on' if overlay_path else 'off'}"
        )

        # Stage 3: Render chunks
        progress.enter(
            RenderStage.RENDERING,
            30,
            f"Rendering {len(chunks)} chunks ({settings.parallel_chunk_renders} parallel)...",
        )

        def on_chunk(done: int, total: int) -> None:
            progress.report(30 + round(done / total * 42), f"Rendered {done}/{total} chunks")

        renderer = ChunkRenderer(self.context, overlay_path)
        chunk_paths = await renderer.render_all(chunks, on_chunk)

        # Stage 4: Concatenate + mux
        concatenator = TimelineConcatenator(self.context)
        progress.enter(RenderStage.CONCATENATING, 72, "Joining video segments...")
        concatenated_path = await concatenator.concatenate(chunk_paths)
        shutil.rmtree(self.context.chunks_dir, ignore_errors=True)

        progress.enter(RenderStage.MUXING, 75, "Adding audio...")
        final_path = await concatenator.mux_audio(concatenated_path, timeline.audio_path)

        # Stage 5: Publish
        publisher = Publisher(self.context)
        progress.enter(RenderStage.UPLOADING, 78, "Uploading video (without captions)...")
        video = await publisher.publish(final_path)
        progress.report(80, "Video without captions ready!")

        result = RenderResult(video=video, chunk_count=len(chunks), overlay_chunks=renderer.blended_chunks)

        if request.burn_captions and request.srt_content.strip():
            await self._publish_captioned(request, final_path, timeline, publisher, result)

        return result

    async def _publish_captioned(
        self,
        request: RenderVideoRequest,
        video_path: str,
        timeline: Timeline,
        publisher: Publisher,
        result: RenderResult,
    ) -> None:
        """Burn captions and upload the captioned copy. Failures only add a note to the result."""
        self.progress.enter(RenderStage.CAPTIONING, 82, "Burning in captions...")
        try:
            captioned_path = await CaptionBurner(self.context).burn(
                video_path, request.srt_content, timeline.total_duration_s
            )
            self.progress.report(95, "Uploading captioned video...")
            result.captioned = await publisher.publish(
                captioned_path,
                "video_captioned.mp4",
                heartbeat_percent=96,
                label="captioned video",
            )
        except (FFmpegError, EmptyOutputError, UploadError, OSError) as e:
            logger.warning(f"[CAPTIONS] Caption burning failed, video without captions is available: {e}")
            result.caption_error = str(e)


def _completion_message(result: RenderResult) -> str:
    if result.captioned:
        return "Video rendering complete! Both versions available."
    if result.caption_error:
        return "Video rendering complete! (Captions failed, video without captions available)"
    return "Video rendering complete!"


async def run_render_job(
    request: RenderVideoRequest,
    channel: EventChannel,
    *,
    settings: Optional[Settings] = None,
    storage: Optional[StorageService] = None,
    fetcher: Optional[AssetFetcher] = None,
) -> Optional[RenderResult]:
    """Run a render job to its terminal event.

    This is the single catch-all for a job: any exception becomes the one
    ``error`` event, and the temp directory is removed on every exit path.
    Request validation happens before the temp directory is created. The
    channel is closed on return.
    """
    settings = settings or get_settings()
    reporter = ProgressReporter(channel)
    context: Optional[RenderContext] = None

    try:
        request.validate_for_render()
        logger.info(
            f"Starting video render for project: {request.project_id} "
            f"({len(request.image_urls)} images)"
        )

        context = RenderContext.create(
            project_id=request.project_id,
            settings=settings,
            storage=storage or get_storage_service(settings),
            progress=reporter,
        )
        result = await RenderPipeline(context, fetcher=fetcher).run(request)

        reporter.complete(
            result.video.url,
            result.video.size,
            _completion_message(result),
            video_url_captioned=result.captioned.url if result.captioned else None,
            size_captioned=result.captioned.size if result.captioned else None,
            caption_error=result.caption_error,
        )
        return result

    except asyncio.CancelledError:
        logger.warning(f"Render for project {request.project_id} cancelled (client disconnected)")
        raise
    except Exception as e:
        logger.exception(f"Render video error: {e}")
        reporter.fail(str(e) or e.__class__.__name__)
        return None
    finally:
        if context is not None:
            context.cleanup()
        channel.close()
