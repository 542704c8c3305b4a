"""Core engine - storage, capability state, subscriptions and render jobs.

One EpicMeEngine is built at startup and owns every piece of in-memory
state (capability flags, subscribed URIs, running render jobs). Nothing
lives in module globals.

Callers must not enter the engine concurrently from several threads; all
work happens on one asyncio event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional

from .capabilities import (
    DEFAULT_PREDICATES,
    CapabilityKind,
    CapabilityRegistry,
    CapabilityStateMachine,
    EntityCounts,
    always,
)
from .config import ServerConfig
from .errors import NotFoundError, RenderCancelled, RenderFailed
from .models import Entry, EntryTag, Tag, utc_now
from .notifications import Notifier
from .render import JobState, ProgressCallback, RenderJob, VideoRenderer
from .storage import Database
from .subscriptions import SubscriptionRegistry
from .tag_suggestions import ReconcileResult, Sampler, suggest_tags
from .video import VideoLibrary

log = logging.getLogger(__name__)


class EpicMeEngine:
    """Long-lived owner of all server state."""

    def __init__(self, config: ServerConfig, notifier: Optional[Notifier] = None):
        self.config = config
        self.notifier = notifier or Notifier(config.client_log_level)
        self.db = Database(config.get_db_path())
        self.videos = VideoLibrary(config.get_videos_path())
        self.renderer = VideoRenderer(
            self.videos,
            font_path=str(config.get_font_path()),
            ffmpeg=config.ffmpeg_command,
            total_duration=config.video_duration_seconds,
        )
        self.registry = CapabilityRegistry()
        self.capabilities = CapabilityStateMachine(self.registry, self.notifier, self.entity_counts)
        self.subscriptions = SubscriptionRegistry(self.notifier)
        self.active_jobs: dict[str, RenderJob] = {}
        self._background: set[asyncio.Task] = set()
        self._unsubscribers: list[Callable[[], None]] = []
        self._initialized = False

    async def initialize(self) -> None:
        """Register every capability, wire the buses and compute initial flags.

        Initial flags are applied without list-changed notifications; no
        client has listed anything yet.
        """
        if self._initialized:
            return

        from .prompts import make_prompts
        from .resources import make_resources
        from .tools import make_tools

        for kind, definitions in (
            (CapabilityKind.TOOL, make_tools()),
            (CapabilityKind.RESOURCE, make_resources()),
            (CapabilityKind.PROMPT, make_prompts()),
        ):
            for name, definition in definitions.items():
                self.registry.register(kind, name, definition)
                self.capabilities.watch(kind, name, DEFAULT_PREDICATES[kind].get(name, always))

        # Capability flags update before per-resource notifications go out
        self._unsubscribers = [
            self.db.on_change(self.capabilities.handle_change),
            self.db.on_change(self.subscriptions.handle_change),
            self.videos.on_change(self.capabilities.handle_change),
            self.videos.on_change(self.subscriptions.handle_video_change),
        ]

        self.capabilities.apply(await self.entity_counts())
        self._initialized = True

    async def close(self) -> None:
        """Cancel outstanding work and release the database."""
        for job in list(self.active_jobs.values()):
            job.cancel_token.cancel("server shutting down")
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.db.close()

    async def entity_counts(self) -> EntityCounts:
        """Full recount of entries, tags and videos."""
        entry_count, tag_count = await self.db.entity_counts()
        return EntityCounts(entry_count=entry_count, tag_count=tag_count, video_count=self.videos.count())

    # ========== Background work ==========

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Run ``coro`` in the background; failures are logged."""
        task = asyncio.ensure_future(coro)
        self._background.add(task)

        def done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                log.error("Background task %s failed", name, exc_info=exc)

        task.add_done_callback(done)
        return task

    async def drain(self) -> None:
        """Wait for all background tasks started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ========== Entries ==========

    async def require_entry(self, entry_id: int) -> Entry:
        entry = await self.db.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f'Entry with ID "{entry_id}" not found')
        return entry

    async def require_tag(self, tag_id: int) -> Tag:
        tag = await self.db.get_tag(tag_id)
        if tag is None:
            raise NotFoundError(f'Tag ID "{tag_id}" not found')
        return tag

    async def create_entry(
        self,
        title: str,
        content: str,
        mood: Optional[str] = None,
        location: Optional[str] = None,
        weather: Optional[str] = None,
        is_private: bool = True,
        is_favorite: bool = False,
        tags: Optional[list[int]] = None,
        sample: Optional[Sampler] = None,
    ) -> Entry:
        """Create an entry, attach the given tags, and kick off tag suggestions.

        Raises:
            NotFoundError: If any tag id does not exist (nothing is created)
        """
        for tag_id in tags or []:
            await self.require_tag(tag_id)

        entry = await self.db.create_entry(
            title=title,
            content=content,
            mood=mood,
            location=location,
            weather=weather,
            is_private=is_private,
            is_favorite=is_favorite,
        )
        for tag_id in tags or []:
            await self.db.add_tag_to_entry(entry.id, tag_id)

        if sample is not None:
            self.spawn(self.suggest_tags(entry.id, sample), name=f"suggest-tags-{entry.id}")
        else:
            log.debug("Client does not support sampling, skipping tag suggestions")

        return await self.require_entry(entry.id)

    async def update_entry(self, entry_id: int, **updates: Any) -> Entry:
        return await self.db.update_entry(entry_id, **updates)

    async def delete_entry(self, entry_id: int) -> Entry:
        return await self.db.delete_entry(entry_id)

    # ========== Tags ==========

    async def create_tag(self, name: str, description: Optional[str] = None) -> Tag:
        return await self.db.create_tag(name=name, description=description)

    async def update_tag(self, tag_id: int, **updates: Any) -> Tag:
        return await self.db.update_tag(tag_id, **updates)

    async def delete_tag(self, tag_id: int) -> Tag:
        return await self.db.delete_tag(tag_id)

    async def add_tag_to_entry(self, entry_id: int, tag_id: int) -> tuple[EntryTag, Entry, Tag]:
        """Attach a tag; attaching twice is a no-op.

        Raises:
            NotFoundError: If either side does not exist
        """
        tag = await self.require_tag(tag_id)
        await self.require_entry(entry_id)
        link = await self.db.add_tag_to_entry(entry_id, tag_id)
        return link, await self.require_entry(entry_id), tag

    async def suggest_tags(self, entry_id: int, sample: Sampler) -> Optional[ReconcileResult]:
        return await suggest_tags(
            self.db,
            self.notifier,
            sample,
            entry_id,
            max_tokens=self.config.sampling_max_tokens,
        )

    # ========== Wrapped video ==========

    async def create_wrapped_video(
        self,
        year: Optional[int] = None,
        mock_time: Optional[float] = None,
        cancel_after: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> dict[str, Any]:
        """Render (or simulate) the wrapped video for ``year``.

        Args:
            year: Calendar year (defaults to the current UTC year)
            mock_time: Simulate the render over this many milliseconds
            cancel_after: Request cancellation after this many milliseconds
            on_progress: Receives progress fractions in [0, 1]

        Returns:
            Outcome dict whose ``status`` is succeeded, cancelled or failed
        """
        year = year or utc_now().year
        job = RenderJob(on_progress=on_progress)
        self.active_jobs[job.id] = job

        timer = None
        if cancel_after is not None and cancel_after >= 0:
            timer = asyncio.get_running_loop().call_later(
                cancel_after / 1000, job.cancel_token.cancel, "cancel_after elapsed"
            )

        try:
            entries = await self.db.get_entries()
            tags = await self.db.get_tags()
            uri = await self.renderer.render_year(job, year, entries, tags, mock_time_ms=mock_time)
        except RenderCancelled as e:
            log.info("Wrapped video for %s cancelled: %s", year, e)
            return {
                "status": JobState.CANCELLED.value,
                "job_id": job.id,
                "year": year,
                "progress": job.progress,
                "message": f"Creating Wrapped Video for {year} was cancelled",
            }
        except RenderFailed as e:
            log.error("Wrapped video for %s failed: %s", year, e)
            return {
                "status": JobState.FAILED.value,
                "job_id": job.id,
                "year": year,
                "exit_code": e.exit_code,
                "error": str(e),
            }
        finally:
            if timer is not None:
                timer.cancel()
            self.active_jobs.pop(job.id, None)

        return {
            "status": job.state.value,
            "job_id": job.id,
            "year": year,
            "video_uri": uri,
        }

    def cancel_render(self, job_id: str) -> bool:
        """Request cancellation of a running job.

        Returns:
            False if no such job is running
        """
        job = self.active_jobs.get(job_id)
        if job is None:
            return False
        job.cancel_token.cancel("cancel requested")
        return True
