"""Custom exceptions for the timeline render service.

Every failure that ends a render job is a ``RenderError``. The top-level job
handler turns it into the single ``error`` event on the progress stream, so
``message`` is written to be shown to the caller more or less verbatim.
"""

from typing import Any


class RenderError(Exception):
    """Base exception for all render service errors."""

    code: str = "RENDER_FAILED"
    status_code: int = 500
    message: str = "Video rendering failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        stage: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.stage = stage
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON error responses."""
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.stage:
            data["stage"] = self.stage
        return data


# =============================================================================
# Request Errors (400)
# =============================================================================


class InvalidRenderRequestError(RenderError):
    """Render request is malformed. Never retried."""

    code = "INVALID_RENDER_REQUEST"
    status_code = 400
    message = "Invalid render request"


class MissingRequiredFieldsError(InvalidRenderRequestError):
    code = "MISSING_REQUIRED_FIELDS"
    message = "Missing required fields"


class TimingCountMismatchError(InvalidRenderRequestError):
    code = "TIMING_COUNT_MISMATCH"
    message = "Image timings must match image count"


# =============================================================================
# Asset Errors
# =============================================================================


class AssetDownloadError(RenderError):
    """A required remote asset could not be fetched."""

    code = "ASSET_DOWNLOAD_FAILED"
    status_code = 502
    message = "Failed to download asset"

    def __init__(
        self,
        url: str | None = None,
        *,
        status: int | None = None,
        reason: str | None = None,
    ):
        if url and status is not None:
            message = f"Failed to download {url}: {status}"
        elif url and reason:
            message = f"Failed to download {url}: {reason}"
        elif url:
            message = f"Failed to download {url}"
        else:
            message = self.message
        self.url = url
        self.status = status
        super().__init__(message, stage="downloading")


class InvalidImageError(AssetDownloadError):
    """Downloaded image is not a decodable picture."""

    code = "INVALID_IMAGE"
    message = "Downloaded image is not a valid image file"

    def __init__(self, url: str | None = None, reason: str | None = None):
        super().__init__(url, reason=reason or "not a valid image file")


# =============================================================================
# FFmpeg Errors
# =============================================================================


class FFmpegError(RenderError):
    """An FFmpeg/ffprobe subprocess exited unsuccessfully."""

    code = "FFMPEG_FAILED"
    message = "FFmpeg failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        returncode: int | None = None,
        stderr: str = "",
        stage: str | None = None,
    ):
        self.returncode = returncode
        self.stderr = stderr
        if message and stderr:
            message = f"{message}: {_tail(stderr)}"
        super().__init__(message, stage=stage)


class FFmpegTimeoutError(FFmpegError):
    code = "FFMPEG_TIMEOUT"
    message = "FFmpeg timed out"


class ChunkRenderError(FFmpegError):
    code = "CHUNK_RENDER_FAILED"
    message = "Chunk rendering failed"


class OverlayError(FFmpegError):
    """Overlay blend failed. Always absorbed by the chunk renderer."""

    code = "OVERLAY_FAILED"
    message = "Overlay blend failed"


class ConcatenationError(FFmpegError):
    code = "CONCATENATION_FAILED"
    message = "Chunk concatenation failed"


class MuxError(FFmpegError):
    code = "MUX_FAILED"
    message = "Audio muxing failed"


class CaptionBurnError(FFmpegError):
    code = "CAPTION_BURN_FAILED"
    message = "Caption burning failed"


class EmptyOutputError(RenderError):
    code = "EMPTY_OUTPUT"
    message = "FFmpeg produced empty video file"


# =============================================================================
# Storage Errors
# =============================================================================


class UploadError(RenderError):
    code = "UPLOAD_FAILED"
    status_code = 502
    message = "Failed to upload video"


def _tail(text: str, max_chars: int = 2000) -> str:
    """Keep the end of FFmpeg's stderr, which is where the actual error is."""
    text = text.strip()
    if len(text) <= max_chars:
        return text
    return "..." + text[-max_chars:]
