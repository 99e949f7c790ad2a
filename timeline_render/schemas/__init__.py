from timeline_render.schemas.render import (
    CompleteEvent,
    ErrorEvent,
    ImageTiming,
    ProgressEvent,
    RenderEvent,
    RenderVideoRequest,
)

__all__ = [
    "RenderVideoRequest",
    "ImageTiming",
    "ProgressEvent",
    "CompleteEvent",
    "ErrorEvent",
    "RenderEvent",
]
