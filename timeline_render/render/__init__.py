from timeline_render.render.caption_burner import CaptionBurner
from timeline_render.render.chunk_renderer import ChunkRenderer
from timeline_render.render.concatenator import TimelineConcatenator
from timeline_render.render.context import RenderContext
from timeline_render.render.pipeline import RenderPipeline, RenderResult, run_render_job
from timeline_render.render.publisher import Publisher

__all__ = [
    "RenderPipeline",
    "RenderResult",
    "RenderContext",
    "ChunkRenderer",
    "TimelineConcatenator",
    "CaptionBurner",
    "Publisher",
    "run_render_job",
]
