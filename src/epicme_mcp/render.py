"""Year-in-review ("wrapped") video rendering.

A render job turns a year's journal statistics into a list of slides,
lays them out on a fixed-length timeline and hands the result to ffmpeg.
Progress is streamed as a fraction in [0, 1]; a cancellation token is
checked at every step and kills the renderer outright when set.

A simulated mode walks through the same job lifecycle without spawning
anything, for clients and tests that only care about progress and
cancellation behaviour.
"""

from __future__ import annotations

import asyncio
import contextlib
import getpass
import inspect
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import InvalidTransition, RenderCancelled, RenderFailed
from .locking import discard_file, publish_file
from .models import Entry, Tag, utc_now, video_uri, year_of
from .video import VideoLibrary

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DURATION_SECONDS = 60.0
DEFAULT_FONT_SIZE = 72
LINE_SPACING = 12
SIMULATED_STEPS = 10

# ffmpeg progress lines look like "... time=00:00:12.34 bitrate=..."
TIME_PATTERN = re.compile(r"time=(\d{2}):(\d{2}):(\d{2})\.(\d{2})")


# ========== Slides ==========

@dataclass(frozen=True)
class Slide:
    """One block of text shown during its own time slot."""
    text: str
    color: str
    fontsize: int = DEFAULT_FONT_SIZE


@dataclass(frozen=True)
class SlideTiming:
    """Time slot of one slide.

    The slide fades in over the first third of its slot, holds, and fades
    out over the last third.
    """
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def fade(self) -> float:
        return self.duration / 3

    @property
    def fade_in_end(self) -> float:
        return self.start + self.fade

    @property
    def fade_out_start(self) -> float:
        return self.end - self.fade

    def alpha_at(self, t: float) -> float:
        """Opacity of the slide at time ``t`` (seconds)."""
        if t < self.start or t >= self.end:
            return 0.0
        if t < self.fade_in_end:
            return (t - self.start) / self.fade
        if t < self.fade_out_start:
            return 1.0
        return (self.end - t) / self.fade


def entries_in_year(entries: list[Entry], year: int) -> list[Entry]:
    return [e for e in entries if year_of(e.created_at) == year]


def tags_in_year(tags: list[Tag], year: int) -> list[Tag]:
    return [t for t in tags if year_of(t.created_at) == year]


def format_long_date(day: date) -> str:
    """Format like "October 19, 2026"."""
    return f"{day:%B} {day.day}, {day.year}"


def build_slides(
    entries: list[Entry],
    tags: list[Tag],
    year: int,
    username: Optional[str] = None,
    today: Optional[date] = None,
) -> list[Slide]:
    """Ordered slides summarising a year of journaling.

    ``entries`` and ``tags`` should already be filtered to ``year``.
    """
    username = username or getpass.getuser()
    today = today or utc_now().date()

    slides = [
        Slide(f"Hello {username}!", "#FF1493"),
        Slide(f"It is {format_long_date(today)}", "#33FF99"),
        Slide(f"Here is your EpicMe wrapped video for {year}", "#66CCFF"),
        Slide(f"You wrote {len(entries)} entries in {year}", "#ff69b4"),
    ]

    if entries:
        # max/min keep the first entry on ties
        longest = max(entries, key=lambda e: len(e.content))
        shortest = min(entries, key=lambda e: len(e.content))
        slides.append(Slide(
            f'Your longest entry was {len(longest.content)} characters\n"{longest.title}"',
            "#FF0000",
        ))
        slides.append(Slide(
            f'Your shortest entry was {len(shortest.content)} characters\n"{shortest.title}"',
            "#B39DDB",
        ))
    else:
        slides.append(Slide(f"You did not write any entries in {year}", "#D2B48C"))

    if tags:
        slides.append(Slide(f"And you created {len(tags)} tags in {year}", "#FFB300"))
    else:
        slides.append(Slide(f"You did not create any tags in {year}", "#D2B48C"))

    slides.append(Slide("Good job!", "red"))
    slides.append(Slide(f"Keep Journaling in {year + 1}!", "#ffa500"))
    return slides


def compute_timeline(slide_count: int, total_duration: float) -> list[SlideTiming]:
    """Split ``total_duration`` into equal consecutive slots.

    Raises:
        ValueError: If there are no slides or the duration is not positive
    """
    if slide_count <= 0:
        raise ValueError("At least one slide is required")
    if total_duration <= 0:
        raise ValueError("Total duration must be positive")

    per_slide = total_duration / slide_count
    return [SlideTiming(start=per_slide * i, end=per_slide * (i + 1)) for i in range(slide_count)]


# ========== ffmpeg command ==========

def _num(value: float) -> str:
    return format(round(value, 4), "g")


def escape_drawtext(text: str) -> str:
    """Escape a line for a single-quoted drawtext ``text`` option."""
    return text.replace("\\", "\\\\").replace("'", "'\\''")


def alpha_expression(timing: SlideTiming) -> str:
    """ffmpeg expression for SlideTiming.alpha_at."""
    start, end, fade = _num(timing.start), _num(timing.end), _num(timing.fade)
    fade_in_end, fade_out_start = _num(timing.fade_in_end), _num(timing.fade_out_start)
    return (
        f"if(lt(t,{start}),0,"
        f"if(lt(t,{fade_in_end}),(t-{start})/{fade},"
        f"if(lt(t,{fade_out_start}),1,"
        f"if(lt(t,{end}),({end}-t)/{fade},0))))"
    )


def build_drawtext_filter(slides: list[Slide], timings: list[SlideTiming], font_path: str) -> str:
    """Chain of drawtext filters, one per line of every slide."""
    filters = []
    for slide, timing in zip(slides, timings):
        scroll = f"h-((t-{_num(timing.start)})*(h+text_h)/{_num(timing.duration)})"
        color = slide.color.replace("#", "0x") if slide.color.startswith("#") else slide.color
        alpha = alpha_expression(timing)
        for line_idx, line in enumerate(slide.text.split("\n")):
            y_offset = line_idx * (slide.fontsize + LINE_SPACING)
            filters.append(
                f"drawtext=fontfile={font_path}:text='{escape_drawtext(line)}'"
                f":fontcolor={color}:fontsize={slide.fontsize}"
                f":x=(w-text_w)/2:y={scroll}+{y_offset}"
                f":alpha='{alpha}'"
                f":shadowcolor=black:shadowx=4:shadowy=4"
            )
    return ",".join(filters)


def build_ffmpeg_command(
    slides: list[Slide],
    output_path: Path,
    font_path: str,
    total_duration: float = DEFAULT_DURATION_SECONDS,
    ffmpeg: str = "ffmpeg",
) -> list[str]:
    """argv that renders ``slides`` onto a black 720p background."""
    timings = compute_timeline(len(slides), total_duration)
    return [
        ffmpeg,
        "-f", "lavfi",
        "-i", f"color=c=black:s=1280x720:d={_num(total_duration)}",
        "-vf", build_drawtext_filter(slides, timings, font_path),
        "-c:v", "libx264",
        "-preset", "veryslow",
        "-crf", "32",
        "-pix_fmt", "yuv420p",
        # output goes to a temp name, so the container can't be inferred
        "-f", "mp4",
        "-y",
        str(output_path),
    ]


def parse_elapsed(text: str) -> Optional[float]:
    """Seconds from the last ``time=HH:MM:SS.cc`` marker in ``text``."""
    matches = TIME_PATTERN.findall(text)
    if not matches:
        return None
    hours, minutes, seconds, hundredths = (int(x) for x in matches[-1])
    return hours * 3600 + minutes * 60 + seconds + hundredths / 100


# ========== Jobs ==========

class CancelToken:
    """Cooperative cancellation flag shared down a render's call chain."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, message: str = "Render job was cancelled") -> None:
        if self.cancelled:
            raise RenderCancelled(message)


class JobState(Enum):
    """Lifecycle state of a render job."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TRANSITIONS = {
    JobState.PENDING: {JobState.RUNNING, JobState.CANCELLED},
    JobState.RUNNING: {JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED},
}

ProgressCallback = Callable[[float], Any]


@dataclass
class RenderJob:
    """One render invocation."""
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: JobState = JobState.PENDING
    progress: float = 0.0
    cancel_token: CancelToken = field(default_factory=CancelToken)
    on_progress: Optional[ProgressCallback] = None
    exit_code: Optional[int] = None

    def transition(self, new_state: JobState) -> None:
        """Move to ``new_state``.

        Raises:
            InvalidTransition: If the move is not forward along the lifecycle
        """
        if new_state not in _TRANSITIONS.get(self.state, set()):
            raise InvalidTransition(f"Job {self.id}: {self.state.value} -> {new_state.value}")
        log.debug("Job %s: %s -> %s", self.id, self.state.value, new_state.value)
        self.state = new_state

    async def report_progress(self, value: float) -> None:
        """Clamp to [0, 1] and forward if it moves progress forward.

        Nothing is forwarded once cancellation has been requested.
        """
        if self.cancel_token.cancelled:
            return
        value = min(max(value, 0.0), 1.0)
        if value <= self.progress:
            return
        self.progress = value
        if self.on_progress is not None:
            result = self.on_progress(value)
            if inspect.isawaitable(result):
                await result

    async def run(self, work: Callable[[], Awaitable[T]]) -> T:
        """Drive ``work`` through the job lifecycle.

        Raises:
            RenderCancelled: If cancelled before or during the work
            RenderFailed: If the work failed
        """
        if self.cancel_token.cancelled:
            self.transition(JobState.CANCELLED)
            raise RenderCancelled(f"Render job {self.id} was cancelled before it started")

        self.transition(JobState.RUNNING)
        try:
            result = await work()
        except RenderCancelled:
            self.transition(JobState.CANCELLED)
            raise
        except asyncio.CancelledError:
            # Task cancellation from the host counts as job cancellation
            self.cancel_token.cancel("task cancelled")
            self.transition(JobState.CANCELLED)
            raise
        except RenderFailed as e:
            self.exit_code = e.exit_code
            self.transition(JobState.FAILED)
            raise
        except Exception:
            self.transition(JobState.FAILED)
            raise

        self.transition(JobState.SUCCEEDED)
        return result


async def simulate_render(job: RenderJob, duration_seconds: float, steps: int = SIMULATED_STEPS) -> None:
    """Advance progress in ``steps`` equal increments over ``duration_seconds``.

    Raises:
        RenderCancelled: If the token is set before any step
    """
    step_time = duration_seconds / steps
    for i in range(steps):
        job.cancel_token.raise_if_cancelled()
        await asyncio.sleep(step_time)
        job.cancel_token.raise_if_cancelled()
        await job.report_progress((i + 1) / steps)


async def _pump_progress(stream: asyncio.StreamReader, job: RenderJob, total_duration: float) -> None:
    """Forward elapsed-time markers from the renderer's stderr."""
    pending = ""
    while True:
        chunk = await stream.read(4096)
        if not chunk:
            break
        pending += chunk.decode("utf-8", errors="replace")
        # ffmpeg separates progress updates with \r
        *complete, pending = re.split(r"[\r\n]", pending)
        for line in complete:
            elapsed = parse_elapsed(line)
            if elapsed is not None:
                await job.report_progress(elapsed / total_duration)

    elapsed = parse_elapsed(pending)
    if elapsed is not None:
        await job.report_progress(elapsed / total_duration)


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()


async def run_renderer(job: RenderJob, argv: list[str], total_duration: float) -> None:
    """Run an external renderer and stream its progress into ``job``.

    Cancellation kills the process with SIGKILL and always wins, even if
    the process manages to exit 0 at the same moment.

    Raises:
        RenderCancelled: If the token was set
        RenderFailed: If the process exited non-zero without cancellation
    """
    token = job.cancel_token
    token.raise_if_cancelled()

    log.info("Job %s: starting %s", job.id, argv[0])
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )

    async def kill_on_cancel() -> None:
        await token.wait()
        log.info("Job %s: cancelled, killing renderer (pid %s)", job.id, process.pid)
        _kill(process)

    watcher = asyncio.ensure_future(kill_on_cancel())
    try:
        await _pump_progress(process.stderr, job, total_duration)
        exit_code = await process.wait()
    finally:
        watcher.cancel()
        if process.returncode is None:
            _kill(process)
            await process.wait()

    if token.cancelled:
        raise RenderCancelled(f"Render job {job.id} was cancelled")
    if exit_code != 0:
        raise RenderFailed(f"{argv[0]} exited with code {exit_code}", exit_code=exit_code)
    await job.report_progress(1.0)


class VideoRenderer:
    """Renders wrapped videos into a VideoLibrary."""

    def __init__(
        self,
        library: VideoLibrary,
        font_path: str,
        ffmpeg: str = "ffmpeg",
        total_duration: float = DEFAULT_DURATION_SECONDS,
    ):
        self.library = library
        self.font_path = font_path
        self.ffmpeg = ffmpeg
        self.total_duration = total_duration

    @staticmethod
    def output_name(year: int) -> str:
        return f"wrapped-{year}.mp4"

    async def render_year(
        self,
        job: RenderJob,
        year: int,
        entries: list[Entry],
        tags: list[Tag],
        mock_time_ms: Optional[float] = None,
    ) -> str:
        """Render the wrapped video for ``year``.

        With ``mock_time_ms`` > 0 the render is simulated and no file is
        written. Otherwise the video is rendered to a job-private temp file
        that is published over ``wrapped-{year}.mp4`` only on success and
        deleted on cancellation or failure.

        Returns:
            The video's resource URI
        """
        name = self.output_name(year)

        if mock_time_ms is not None and mock_time_ms > 0:
            await job.run(lambda: simulate_render(job, mock_time_ms / 1000))
            return video_uri(name)

        slides = build_slides(entries_in_year(entries, year), tags_in_year(tags, year), year)
        target = self.library.path_for(name)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = target.with_name(f".{name}.{job.id}.tmp")
        argv = build_ffmpeg_command(slides, tmp_path, self.font_path, self.total_duration, self.ffmpeg)

        try:
            await job.run(lambda: run_renderer(job, argv, self.total_duration))
        except BaseException:
            if discard_file(tmp_path):
                log.info("Job %s: removed partial artifact %s", job.id, tmp_path)
            raise

        publish_file(tmp_path, target)
        await self.library.notify_published(name)
        return video_uri(name)
