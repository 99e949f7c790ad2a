"""
Typed FFmpeg command building and execution.

Commands are assembled from structured pieces (inputs, filters, output
options) and rendered to an argument vector, never to a shell string. Filter
option values are escaped for both levels of FFmpeg's filtergraph syntax, so
paths containing quotes, colons or commas cannot break a graph.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from timeline_render.exceptions import FFmpegError, FFmpegTimeoutError

logger = logging.getLogger(__name__)

# Characters with meaning inside a single filter's option list
_OPTION_SPECIAL = ("\\", "'", ":")
# Characters with meaning in the filtergraph around the option list
_GRAPH_SPECIAL = ("\\", "'", "[", "]", ",", ";")


def escape_option_value(value: Any) -> str:
    """Escape a filter option value (first level of FFmpeg quoting)."""
    text = str(value)
    for ch in _OPTION_SPECIAL:
        text = text.replace(ch, "\\" + ch)
    return text


def escape_graph_text(text: str) -> str:
    """Escape text embedded in a filtergraph description (second level)."""
    for ch in _GRAPH_SPECIAL:
        text = text.replace(ch, "\\" + ch)
    return text


# ============================================================================
# Filters
# ============================================================================


@dataclass
class Filter:
    """A single filter, e.g. ``scale=1920:1080:force_original_aspect_ratio=decrease``."""

    name: str
    args: tuple[Any, ...] = ()
    options: dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        parts = [escape_graph_text(escape_option_value(a)) for a in self.args]
        parts.extend(
            f"{key}={escape_graph_text(escape_option_value(value))}"
            for key, value in self.options.items()
        )
        if not parts:
            return self.name
        return f"{self.name}={':'.join(parts)}"


def make_filter(name: str, *args: Any, **options: Any) -> Filter:
    return Filter(name=name, args=args, options=options)


@dataclass
class FilterChain:
    """Comma-joined filters with optional input/output pad labels."""

    filters: list[Filter]
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)

    def render(self) -> str:
        head = "".join(f"[{label}]" for label in self.inputs)
        tail = "".join(f"[{label}]" for label in self.outputs)
        body = ",".join(f.render() for f in self.filters)
        return f"{head}{body}{tail}"


@dataclass
class FilterGraph:
    """Semicolon-joined filter chains for ``-filter_complex``."""

    chains: list[FilterChain] = field(default_factory=list)

    def add(self, chain: FilterChain) -> "FilterGraph":
        self.chains.append(chain)
        return self

    def render(self) -> str:
        return ";".join(chain.render() for chain in self.chains)


# ============================================================================
# Commands
# ============================================================================


@dataclass
class MediaInput:
    """An ``-i`` input together with the options that must precede it."""

    path: str
    options: list[str] = field(default_factory=list)

    def to_args(self) -> list[str]:
        return [*self.options, "-i", self.path]


@dataclass
class FFmpegCommand:
    """Structured FFmpeg invocation rendered with :meth:`to_args`."""

    output_path: str
    binary: str = "ffmpeg"
    global_options: list[str] = field(default_factory=lambda: ["-hide_banner", "-y"])
    inputs: list[MediaInput] = field(default_factory=list)
    video_filters: Optional[FilterChain] = None
    filter_graph: Optional[FilterGraph] = None
    maps: list[str] = field(default_factory=list)
    output_options: list[str] = field(default_factory=list)

    def add_input(self, path: str, *options: str) -> int:
        """Append an input and return its stream index."""
        self.inputs.append(MediaInput(path=path, options=list(options)))
        return len(self.inputs) - 1

    def add_output_options(self, *options: Union[str, int, float]) -> "FFmpegCommand":
        self.output_options.extend(str(o) for o in options)
        return self

    def to_args(self) -> list[str]:
        if self.video_filters is not None and self.filter_graph is not None:
            raise ValueError("Use either video_filters or filter_graph, not both")

        args = [self.binary, *self.global_options]
        for media_input in self.inputs:
            args.extend(media_input.to_args())
        if self.video_filters is not None:
            args.extend(["-vf", self.video_filters.render()])
        if self.filter_graph is not None:
            args.extend(["-filter_complex", self.filter_graph.render()])
        for stream in self.maps:
            args.extend(["-map", stream])
        args.extend(self.output_options)
        args.append(self.output_path)
        return args


def h264_output_options(preset: str, crf: int, fps: int, threads: int = 0) -> list[str]:
    """Encoder settings shared by every re-encoding pass of a chunk.

    All chunks must come out with identical codec, frame rate and pixel
    format, otherwise stream-copy concatenation produces a broken file.
    """
    return [
        "-threads", str(threads),
        "-c:v", "libx264",
        "-preset", preset,
        "-crf", str(crf),
        "-r", str(fps),
        "-pix_fmt", "yuv420p",
    ]


# ============================================================================
# Execution
# ============================================================================


@dataclass
class FFmpegResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


ProgressCallback = Callable[[float], None]


async def run_ffmpeg(
    args: list[str],
    *,
    timeout: Optional[float] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> FFmpegResult:
    """Run an FFmpeg/ffprobe argument vector without blocking the event loop.

    With ``progress_callback`` the command gets ``-progress pipe:1`` and the
    callback receives the encoded output time in seconds as FFmpeg reports it.

    Raises:
        FFmpegTimeoutError: The process exceeded ``timeout`` and was killed.
        FFmpegError: The binary could not be started.
    """
    if progress_callback is not None:
        # -progress must precede the output path
        args = [*args[:-1], "-progress", "pipe:1", "-nostats", args[-1]]

    logger.debug(f"[FFMPEG] {' '.join(args)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise FFmpegError(f"FFmpeg binary not found: {args[0]}") from e

    async def read_stdout() -> bytes:
        if progress_callback is None:
            return await proc.stdout.read()
        async for raw_line in proc.stdout:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line.startswith("out_time_us="):
                try:
                    progress_callback(int(line.split("=", 1)[1]) / 1_000_000)
                except ValueError:
                    pass  # "N/A" before the first frame
        return b""

    async def communicate() -> tuple[bytes, bytes]:
        stdout, stderr = await asyncio.gather(read_stdout(), proc.stderr.read())
        await proc.wait()
        return stdout, stderr

    try:
        stdout, stderr = await asyncio.wait_for(communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        raise FFmpegTimeoutError(f"FFmpeg timed out after {timeout:.0f}s")
    except asyncio.CancelledError:
        # The encoder must be dead before the job removes its temp dir
        _kill(proc)
        await proc.wait()
        raise

    return FFmpegResult(
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass
