"""Rendered video artifacts on disk."""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import NotFoundError
from .events import MutationBus, VideoChange

log = logging.getLogger(__name__)

VIDEO_SUFFIX = ".mp4"


class VideoLibrary:
    """Directory of published videos plus its change source."""

    def __init__(self, videos_dir: Path, bus: Optional[MutationBus[VideoChange]] = None):
        self.videos_dir = videos_dir
        self.bus: MutationBus[VideoChange] = bus if bus is not None else MutationBus("videos")

    def path_for(self, name: str) -> Path:
        """Resolve a video name inside the library.

        Raises:
            NotFoundError: If the name would escape the library directory
        """
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise NotFoundError(f'Video with ID "{name}" not found.')
        return self.videos_dir / name

    def list_videos(self) -> list[str]:
        """Names of published videos. Temp and lock files are skipped."""
        if not self.videos_dir.exists():
            return []
        return sorted(
            p.name
            for p in self.videos_dir.iterdir()
            if p.is_file() and p.suffix == VIDEO_SUFFIX and not p.name.startswith(".")
        )

    def count(self) -> int:
        return len(self.list_videos())

    def read_video(self, name: str) -> bytes:
        """Read a video's bytes.

        Raises:
            NotFoundError: If there is no such video
        """
        path = self.path_for(name)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f'Video with ID "{name}" not found.') from e

    def read_video_base64(self, name: str) -> str:
        return base64.b64encode(self.read_video(name)).decode("ascii")

    def on_change(self, listener: Callable[[VideoChange], Any]) -> Callable[[], None]:
        """Register a listener for newly published videos."""
        return self.bus.subscribe(listener)

    async def notify_published(self, *names: str) -> None:
        log.info("Published video(s): %s", ", ".join(names))
        await self.bus.publish(VideoChange(names=frozenset(names)))
