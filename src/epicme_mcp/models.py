"""Data models for journal entries, tags, and the links between them."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

URI_SCHEME = "epicme"


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def epoch_now() -> int:
    """Get current time as whole epoch seconds."""
    return int(time.time())


def year_of(epoch_seconds: int) -> int:
    """Return the UTC calendar year an epoch timestamp falls in."""
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).year


def entry_uri(entry_id: int) -> str:
    return f"{URI_SCHEME}://entries/{entry_id}"


def tag_uri(tag_id: int) -> str:
    return f"{URI_SCHEME}://tags/{tag_id}"


def video_uri(name: str) -> str:
    return f"{URI_SCHEME}://videos/{name}"


def tags_list_uri() -> str:
    return f"{URI_SCHEME}://tags"


def parse_uri(uri: str) -> tuple[str, Optional[str]]:
    """Split an epicme URI into (collection, key).

    ``epicme://tags`` -> ("tags", None)
    ``epicme://entries/3`` -> ("entries", "3")

    Raises:
        ValueError: If the URI does not use the epicme scheme
    """
    prefix = f"{URI_SCHEME}://"
    if not uri.startswith(prefix):
        raise ValueError(f"Unsupported resource URI: {uri}")
    path = uri[len(prefix):].strip("/")
    if "/" in path:
        collection, key = path.split("/", 1)
        return collection, key
    return path, None


@dataclass
class Tag:
    """A named label that can be attached to entries."""
    id: int
    name: str
    description: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> dict:
        """Convert tag to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Entry:
    """A single journal entry."""
    id: int
    title: str
    content: str
    mood: Optional[str] = None
    location: Optional[str] = None
    weather: Optional[str] = None
    is_private: bool = True
    is_favorite: bool = False
    created_at: int = 0
    updated_at: int = 0

    # Attached tags (populated when read back from storage)
    tags: list[Tag] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert entry to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "mood": self.mood,
            "location": self.location,
            "weather": self.weather,
            "is_private": self.is_private,
            "is_favorite": self.is_favorite,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "tags": [{"id": t.id, "name": t.name} for t in self.tags],
        }


@dataclass(frozen=True)
class EntryTag:
    """Link between an entry and a tag."""
    entry_id: int
    tag_id: int

    def to_dict(self) -> dict:
        return {"entry_id": self.entry_id, "tag_id": self.tag_id}
