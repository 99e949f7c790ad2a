"""Content stores for finished renders.

Renders are written under a fixed key per project, so publishing again
replaces the previous video. Both backends upload straight from the file on
disk; a render is never read into memory.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from timeline_render.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Keys are overwritten on re-render; a cached copy would serve the old video
RENDER_CACHE_CONTROL = "no-cache, max-age=0"


class LocalStorageService:
    """Stores renders on the local filesystem, served by ``/api/storage/files``."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.root = Path(self.settings.local_storage_path)
        self.root.mkdir(parents=True, exist_ok=True)

    def get_file_path(self, storage_key: str) -> Path:
        """Resolve a key to a path under the storage root.

        Raises:
            ValueError: The key points outside the storage root.
        """
        path = (self.root / storage_key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Storage key escapes storage root: {storage_key}")
        return path

    def get_public_url(self, storage_key: str) -> str:
        return f"{self.settings.local_storage_base_url.rstrip('/')}/{storage_key}"

    async def upload_file(
        self, local_path: str, storage_key: str, content_type: Optional[str] = None
    ) -> str:
        destination = self.get_file_path(storage_key)
        destination.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, local_path, destination)
        logger.debug(f"[STORAGE] Stored {storage_key} at {destination}")
        return self.get_public_url(storage_key)


class GCSStorageService:
    """Stores renders in a Google Cloud Storage bucket."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        from google.cloud import storage

        self.settings = settings or get_settings()
        self._storage = storage
        self._bucket = None

    @property
    def bucket(self):
        if self._bucket is None:
            project = self.settings.gcs_project_id or None
            client = self._storage.Client(project=project)
            self._bucket = client.bucket(self.settings.gcs_bucket_name)
        return self._bucket

    def get_public_url(self, storage_key: str) -> str:
        return f"https://storage.googleapis.com/{self.settings.gcs_bucket_name}/{storage_key}"

    async def upload_file(
        self, local_path: str, storage_key: str, content_type: Optional[str] = None
    ) -> str:
        """Upload from disk; the client library sends large files as resumable chunks."""
        blob = self.bucket.blob(storage_key)
        blob.cache_control = RENDER_CACHE_CONTROL
        await asyncio.to_thread(blob.upload_from_filename, local_path, content_type=content_type)
        return self.get_public_url(storage_key)


StorageService = Union[LocalStorageService, GCSStorageService]


def get_storage_service(settings: Optional[Settings] = None) -> StorageService:
    """Build a storage client for one render job. Jobs never share a client."""
    settings = settings or get_settings()
    if settings.use_local_storage:
        return LocalStorageService(settings)
    return GCSStorageService(settings)
