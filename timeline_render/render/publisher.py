import asyncio
import logging
import os
from dataclasses import dataclass

from timeline_render.exceptions import RenderError, UploadError
from timeline_render.render.context import RenderContext

logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPE = "video/mp4"


@dataclass
class PublishedVideo:
    url: str
    storage_key: str
    size: int


def render_storage_key(project_id: str, filename: str = "video.mp4") -> str:
    """Fixed per-project key: re-running a job overwrites instead of duplicating."""
    return f"projects/{project_id}/renders/{filename}"


class Publisher:
    """Uploads finished videos and keeps the progress stream alive while doing so."""

    def __init__(self, context: RenderContext):
        self.context = context

    async def _heartbeat(self, percent: int, message: str) -> None:
        interval = self.context.settings.upload_heartbeat_interval_s
        while True:
            await asyncio.sleep(interval)
            self.context.progress.report(percent, message)

    async def publish(
        self,
        local_path: str,
        filename: str = "video.mp4",
        *,
        heartbeat_percent: int = 79,
        label: str = "video",
    ) -> PublishedVideo:
        """Upload ``local_path`` and return its public URL.

        The heartbeat is not real upload progress; it only tells the caller
        the job is still alive.
        """
        size = os.path.getsize(local_path)
        storage_key = render_storage_key(self.context.project_id, filename)
        size_mb = size / 1024 / 1024
        logger.info(f"[UPLOAD] Uploading {size_mb:.1f} MB {label} to {storage_key}")

        heartbeat = asyncio.create_task(
            self._heartbeat(heartbeat_percent, f"Uploading {label} ({size_mb:.1f} MB)...")
        )
        try:
            url = await self.context.storage.upload_file(local_path, storage_key, VIDEO_CONTENT_TYPE)
        except RenderError:
            raise
        except Exception as e:
            logger.error(f"[UPLOAD] Upload of {storage_key} failed: {e}")
            raise UploadError(f"Failed to upload {label}: {e}", stage="uploading") from e
        finally:
            heartbeat.cancel()

        logger.info(f"[UPLOAD] {label.capitalize()} uploaded: {url}")
        return PublishedVideo(url=url, storage_key=storage_key, size=size)
