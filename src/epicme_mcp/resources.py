"""MCP resource definitions and reads."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Union

from .capabilities import CapabilityKind
from .errors import NotFoundError
from .models import entry_uri, parse_uri, tag_uri, tags_list_uri, video_uri

if TYPE_CHECKING:
    from .engine import EpicMeEngine

JSON_MIME = "application/json"
VIDEO_MIME = "video/mp4"

# collection name in a URI -> resource capability serving it
COLLECTIONS = {
    "entries": "entry",
    "tags": "tag",
    "videos": "video",
}


def make_resources() -> dict[str, dict]:
    """Create MCP resource definitions.

    Definitions with a ``uri`` are static resources; those with a
    ``uriTemplate`` are templates.
    """
    return {
        "tags": {
            "name": "tags",
            "title": "Tags",
            "description": "All tags",
            "uri": tags_list_uri(),
            "mimeType": JSON_MIME,
        },
        "tag": {
            "name": "tag",
            "title": "Tag",
            "description": "A single tag",
            "uriTemplate": "epicme://tags/{id}",
            "mimeType": JSON_MIME,
        },
        "entry": {
            "name": "entry",
            "title": "Journal Entry",
            "description": "A single journal entry",
            "uriTemplate": "epicme://entries/{id}",
            "mimeType": JSON_MIME,
        },
        "video": {
            "name": "video",
            "title": "EpicMe Videos",
            "description": "A single EpicMe video",
            "uriTemplate": "epicme://videos/{name}",
            "mimeType": VIDEO_MIME,
        },
    }


def _enabled(engine: "EpicMeEngine", name: str) -> bool:
    return engine.registry.is_enabled(CapabilityKind.RESOURCE, name)


def list_resource_templates(engine: "EpicMeEngine") -> list[dict]:
    """Enabled resource templates."""
    return [
        cap.definition
        for cap in engine.registry.enabled(CapabilityKind.RESOURCE)
        if "uriTemplate" in cap.definition
    ]


async def list_resources(engine: "EpicMeEngine") -> list[dict]:
    """Enabled static resources plus every concrete member of enabled templates."""
    resources = [
        cap.definition
        for cap in engine.registry.enabled(CapabilityKind.RESOURCE)
        if "uri" in cap.definition
    ]

    if _enabled(engine, "tag"):
        for tag in await engine.db.get_tags():
            resources.append({
                "name": tag.name,
                "uri": tag_uri(tag.id),
                "description": tag.description or f'Tag: "{tag.name}"',
                "mimeType": JSON_MIME,
            })

    if _enabled(engine, "entry"):
        for entry in await engine.db.get_entries():
            resources.append({
                "name": entry.title,
                "uri": entry_uri(entry.id),
                "description": f'Journal Entry: "{entry.title}"',
                "mimeType": JSON_MIME,
            })

    if _enabled(engine, "video"):
        for name in engine.videos.list_videos():
            resources.append({
                "name": name,
                "uri": video_uri(name),
                "description": f"Wrapped video {name}",
                "mimeType": VIDEO_MIME,
            })

    return resources


def _parse_id(key: str, kind: str) -> int:
    try:
        return int(key)
    except ValueError:
        raise NotFoundError(f'{kind} with ID "{key}" not found') from None


async def read_resource(engine: "EpicMeEngine", uri: str) -> tuple[Union[str, bytes], str]:
    """Read one resource.

    Returns:
        (content, mime_type); content is bytes for videos

    Raises:
        NotFoundError: If the resource is disabled, unknown, or missing
    """
    try:
        collection, key = parse_uri(uri)
    except ValueError as e:
        raise NotFoundError(str(e)) from None

    if collection == "tags" and key is None:
        capability = "tags"
    elif key is not None and collection in COLLECTIONS:
        capability = COLLECTIONS[collection]
    else:
        raise NotFoundError(f"Unknown resource: {uri}")

    if not _enabled(engine, capability):
        raise NotFoundError(f"Resource {capability} is not available")

    if capability == "tags":
        tags = await engine.db.get_tags()
        return json.dumps([t.to_dict() for t in tags], default=str), JSON_MIME

    if capability == "tag":
        tag = await engine.require_tag(_parse_id(key, "Tag"))
        return json.dumps(tag.to_dict(), default=str), JSON_MIME

    if capability == "entry":
        entry = await engine.require_entry(_parse_id(key, "Entry"))
        return json.dumps(entry.to_dict(), default=str), JSON_MIME

    return engine.videos.read_video(key), VIDEO_MIME
