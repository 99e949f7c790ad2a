"""SSE progress stream for render jobs.

One ``EventChannel`` per HTTP request: the render job publishes into it and
the response generator drains it, interleaving keepalive comments while the
job has nothing to say.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from enum import Enum
from typing import Optional

from timeline_render.schemas.render import (
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
    RenderEvent,
)

logger = logging.getLogger(__name__)

KEEPALIVE_COMMENT = ": keepalive\n\n"


class RenderStage(Enum):
    """Render job states, in the order a successful job visits them."""

    IDLE = "idle"
    DOWNLOADING = "downloading"
    PREPARING = "preparing"
    RENDERING = "rendering"
    CONCATENATING = "concatenating"
    MUXING = "muxing"
    UPLOADING = "uploading"
    CAPTIONING = "captioning"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RenderStage.COMPLETE, RenderStage.FAILED)


_STAGE_ORDER = list(RenderStage)


class EventChannel:
    """Single-consumer queue of render events."""

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def publish(self, event: RenderEvent) -> None:
        if self._closed:
            logger.warning(f"Dropping {event.type} event on closed channel")
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    async def events(self) -> AsyncGenerator[RenderEvent, None]:
        """Yield published events until the channel is closed."""
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item

    async def stream(self, keepalive_interval_s: float) -> AsyncGenerator[str, None]:
        """Yield SSE frames, with a keepalive comment after each idle interval."""
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=keepalive_interval_s)
            except asyncio.TimeoutError:
                yield KEEPALIVE_COMMENT
                continue
            if item is self._CLOSED:
                return
            yield item.to_sse()


class ProgressReporter:
    """Publishes progress for one job and enforces the job's state machine.

    - Percentages never decrease; a lower value is raised to the last one sent.
    - Entering a stage emits exactly one progress event.
    - Exactly one terminal event (complete or error) is ever published.
    """

    def __init__(self, channel: EventChannel) -> None:
        self.channel = channel
        self.stage = RenderStage.IDLE
        self.percent = 0

    def enter(self, stage: RenderStage, percent: int, message: str) -> None:
        """Transition to a later non-terminal stage."""
        if stage.is_terminal:
            raise ValueError(f"Use complete()/fail() for terminal stage {stage.value}")
        if self.stage.is_terminal:
            raise RuntimeError(f"Job already {self.stage.value}")
        if _STAGE_ORDER.index(stage) <= _STAGE_ORDER.index(self.stage):
            raise RuntimeError(f"Invalid transition {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.report(percent, message)

    def report(self, percent: int, message: str) -> None:
        """Publish progress within the current stage."""
        if self.stage.is_terminal:
            return
        self.percent = max(self.percent, min(int(percent), 100))
        self.channel.publish(
            ProgressEvent(stage=self.stage.value, percent=self.percent, message=message)
        )

    def complete(
        self,
        video_url: str,
        size: int,
        message: str,
        *,
        video_url_captioned: Optional[str] = None,
        size_captioned: Optional[int] = None,
        caption_error: Optional[str] = None,
    ) -> None:
        if self.stage.is_terminal:
            logger.warning(f"Ignoring completion of job already {self.stage.value}")
            return
        self.stage = RenderStage.COMPLETE
        self.percent = 100
        self.channel.publish(
            CompleteEvent(
                video_url=video_url,
                size=size,
                message=message,
                video_url_captioned=video_url_captioned,
                size_captioned=size_captioned,
                caption_error=caption_error,
            )
        )

    def fail(self, error: str) -> None:
        if self.stage.is_terminal:
            logger.warning(f"Ignoring failure of job already {self.stage.value}: {error}")
            return
        self.stage = RenderStage.FAILED
        self.channel.publish(ErrorEvent(error=error or "Unknown error"))
