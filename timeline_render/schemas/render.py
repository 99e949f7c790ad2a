from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from timeline_render.exceptions import MissingRequiredFieldsError, TimingCountMismatchError


class ImageTiming(BaseModel):
    """On-screen interval of one image, in seconds from the start of the video."""

    model_config = ConfigDict(populate_by_name=True)

    start_seconds: float = Field(alias="startSeconds")
    end_seconds: float = Field(alias="endSeconds")


class RenderVideoRequest(BaseModel):
    """Request body for ``POST /render-video``.

    Fields default to empty so a missing field is reported on the event
    stream as "Missing required fields" rather than as a 422.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "projectId": "proj-123",
                    "audioUrl": "https://example.com/voiceover.wav",
                    "imageUrls": ["https://example.com/1.png", "https://example.com/2.png"],
                    "imageTimings": [
                        {"startSeconds": 0, "endSeconds": 4.2},
                        {"startSeconds": 4.2, "endSeconds": 9.0},
                    ],
                    "srtContent": "1\n00:00:00,000 --> 00:00:04,200\nHello\n",
                    "projectTitle": "My video",
                }
            ]
        },
    )

    project_id: str = Field(default="", alias="projectId")
    audio_url: str = Field(default="", alias="audioUrl")
    image_urls: list[str] = Field(default_factory=list, alias="imageUrls")
    image_timings: list[ImageTiming] = Field(default_factory=list, alias="imageTimings")
    srt_content: str = Field(default="", alias="srtContent")
    project_title: str = Field(default="", alias="projectTitle")

    # Optional passes
    burn_captions: bool = Field(default=False, alias="burnCaptions")
    overlay_enabled: bool | None = Field(
        default=None,
        alias="overlayEnabled",
        description="Override the server-wide overlay flag for this job",
    )

    def validate_for_render(self) -> None:
        """Reject requests that can never render. Raised before any scratch space exists."""
        if not self.project_id or not self.audio_url or not self.image_urls:
            raise MissingRequiredFieldsError()
        if len(self.image_timings) != len(self.image_urls):
            raise TimingCountMismatchError()


# ============================================================================
# Progress stream events
# ============================================================================


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_sse(self) -> str:
        """Format event for SSE transmission."""
        return f"data: {self.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


class ProgressEvent(_Event):
    type: Literal["progress"] = "progress"
    stage: str
    percent: int = Field(ge=0, le=100)
    message: str


class CompleteEvent(_Event):
    type: Literal["complete"] = "complete"
    video_url: str = Field(alias="videoUrl")
    size: int
    message: str
    video_url_captioned: str | None = Field(default=None, alias="videoUrlCaptioned")
    size_captioned: int | None = Field(default=None, alias="sizeCaptioned")
    caption_error: str | None = Field(default=None, alias="captionError")


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    error: str


RenderEvent = Union[ProgressEvent, CompleteEvent, ErrorEvent]
