"""
Remote asset acquisition for render jobs.

Downloads the voice-over, the timeline images and the optional overlay video
into the job's scratch directory. Required assets fail the job on the first
error; the overlay is best-effort.
"""

import asyncio
import logging
import os
from typing import Callable, Optional
from urllib.parse import urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from timeline_render.config import Settings
from timeline_render.exceptions import AssetDownloadError, InvalidImageError
from timeline_render.utils.aio import gather_or_cancel

logger = logging.getLogger(__name__)

# Pillow format name -> file extension FFmpeg recognises
IMAGE_EXTENSIONS = {
    "PNG": ".png",
    "JPEG": ".jpg",
    "WEBP": ".webp",
    "GIF": ".gif",
    "BMP": ".bmp",
    "TIFF": ".tiff",
}

DOWNLOAD_CHUNK_BYTES = 1024 * 1024


def url_extension(url: str, default: str) -> str:
    """Extension of the URL path, e.g. ``.wav``; ``default`` if there is none."""
    try:
        path = urlparse(url).path
    except ValueError:
        return default
    ext = os.path.splitext(path)[1].lower()
    return ext if 1 < len(ext) <= 5 else default


def verify_image(path: str, url: str) -> str:
    """Check that ``path`` decodes as an image and return its extension."""
    try:
        with Image.open(path) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidImageError(url, reason=str(e) or None) from e
    return IMAGE_EXTENSIONS.get(image_format or "", ".png")


class AssetFetcher:
    """Downloads job assets with ``httpx``, streaming each body to disk."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.settings.download_timeout_s,
            follow_redirects=True,
            transport=self._transport,
        )

    async def _download(self, client: httpx.AsyncClient, url: str, dest_path: str) -> str:
        """Stream ``url`` to ``dest_path``. Every failure surfaces as :class:`AssetDownloadError`."""
        try:
            async with client.stream("GET", url) as response:
                if not response.is_success:
                    raise AssetDownloadError(url, status=response.status_code)
                with open(dest_path, "wb") as f:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_BYTES):
                        f.write(chunk)
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            raise AssetDownloadError(url, reason=str(e) or e.__class__.__name__) from e
        return dest_path

    async def download(self, url: str, dest_path: str) -> str:
        """Download a single required asset."""
        async with self._client() as client:
            return await self._download(client, url, dest_path)

    async def download_images(
        self,
        urls: list[str],
        assets_dir: str,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> list[str]:
        """Download every image, in bounded parallel, and return local paths in input order.

        Each file is verified with Pillow and renamed to carry the extension
        of its real format. The first failure cancels the remaining downloads.
        """
        semaphore = asyncio.Semaphore(max(1, self.settings.download_concurrency))
        paths: list[Optional[str]] = [None] * len(urls)
        completed = 0

        async with self._client() as client:

            async def fetch(index: int, url: str) -> None:
                nonlocal completed
                async with semaphore:
                    stem = os.path.join(assets_dir, f"image_{index + 1:03d}")
                    await self._download(client, url, stem)
                    ext = await asyncio.to_thread(verify_image, stem, url)
                    os.replace(stem, stem + ext)
                    paths[index] = stem + ext
                completed += 1
                if on_progress:
                    on_progress(completed, len(urls))

            await gather_or_cancel(*(fetch(i, url) for i, url in enumerate(urls)))

        return [path for path in paths if path is not None]

    async def download_optional(self, url: str, dest_path: str) -> Optional[str]:
        """Download a cosmetic asset. Any failure is logged and yields ``None``."""
        if not url:
            return None
        try:
            path = await self.download(url, dest_path)
        except AssetDownloadError as e:
            logger.warning(f"[ASSETS] Optional asset unavailable, continuing without it: {e}")
            return None
        if os.path.getsize(path) == 0:
            logger.warning(f"[ASSETS] Optional asset is empty, continuing without it: {url}")
            return None
        return path
