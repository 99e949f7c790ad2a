"""Render endpoint: starts a job and streams its progress as Server-Sent Events."""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from timeline_render.config import Settings, get_settings
from timeline_render.render.pipeline import run_render_job
from timeline_render.schemas.render import ErrorEvent, RenderVideoRequest
from timeline_render.services.event_stream import EventChannel

logger = logging.getLogger(__name__)

router = APIRouter()

# How long a disconnect waits for the cancelled job to kill FFmpeg and clean up
JOB_CANCEL_WAIT_S = 10.0

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse_response(body: AsyncGenerator[str, None]) -> StreamingResponse:
    return StreamingResponse(body, media_type="text/event-stream", headers=SSE_HEADERS)


async def _single_error(message: str) -> AsyncGenerator[str, None]:
    yield ErrorEvent(error=message).to_sse()


async def _job_events(
    render_request: RenderVideoRequest, settings: Settings
) -> AsyncGenerator[str, None]:
    """Run the job in its own task and relay its events until the channel closes.

    If the client goes away the response generator is closed, and the job is
    cancelled so it stops spawning FFmpeg and removes its temp directory.
    The generator waits for that before it finishes.
    """
    channel = EventChannel()
    job = asyncio.create_task(run_render_job(render_request, channel, settings=settings))
    try:
        async for frame in channel.stream(settings.sse_keepalive_interval_s):
            yield frame
    finally:
        if not job.done():
            logger.info(f"Client disconnected, cancelling render for project {render_request.project_id}")
            job.cancel()
            done, _ = await asyncio.wait({job}, timeout=JOB_CANCEL_WAIT_S)
            if not done:
                logger.warning(
                    f"Render for project {render_request.project_id} still stopping "
                    f"after {JOB_CANCEL_WAIT_S:.0f}s"
                )


@router.post("/render-video")
async def render_video(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """Render a timeline video, streaming progress, then one complete or error event."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _sse_response(_single_error("Invalid JSON body"))

    if not isinstance(payload, dict):
        return _sse_response(_single_error("Request body must be a JSON object"))

    try:
        render_request = RenderVideoRequest.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(part) for part in first.get("loc", ()))
        logger.info(f"Rejected render request: {e}")
        return _sse_response(_single_error(f"Invalid request: {loc}: {first.get('msg')}"))

    return _sse_response(_job_events(render_request, settings))
