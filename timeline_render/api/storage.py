"""Serves rendered videos when the service runs with local storage (development)."""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from timeline_render.config import Settings, get_settings
from timeline_render.services.storage_service import LocalStorageService

router = APIRouter()

RENDER_MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".srt": "application/x-subrip",
}


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


@router.get("/files/{storage_key:path}")
async def get_file(storage_key: str, settings: Settings = Depends(get_settings)) -> FileResponse:
    if not settings.use_local_storage:
        raise _not_found("Local storage not enabled")

    try:
        file_path = LocalStorageService(settings).get_file_path(storage_key)
    except ValueError:
        raise _not_found("File not found")
    if not file_path.is_file():
        raise _not_found("File not found")

    return FileResponse(
        path=str(file_path),
        media_type=RENDER_MEDIA_TYPES.get(file_path.suffix.lower(), "application/octet-stream"),
        filename=file_path.name,
    )
