"""MCP prompt definitions."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from .capabilities import CapabilityKind
from .errors import NotFoundError
from .models import entry_uri, tags_list_uri

if TYPE_CHECKING:
    from .engine import EpicMeEngine


def make_prompts() -> dict[str, dict]:
    """Create MCP prompt definitions."""
    return {
        "suggest_tags": {
            "name": "suggest_tags",
            "title": "Suggest Tags",
            "description": "Suggest tags for a journal entry",
            "arguments": [
                {
                    "name": "entry_id",
                    "description": "The ID of the journal entry to suggest tags for",
                    "required": True,
                },
            ],
        },
    }


async def get_prompt(engine: "EpicMeEngine", name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Render a prompt into MCP messages.

    Returns:
        Dict with ``description`` and ``messages``; each message is a
        role/content dict where content is a text or embedded resource

    Raises:
        NotFoundError: If the prompt is unknown or disabled, or the entry is missing
        ValueError: If ``entry_id`` is not an integer
    """
    if not engine.registry.is_enabled(CapabilityKind.PROMPT, name):
        raise NotFoundError(f"Prompt {name} is not available")

    arguments = arguments or {}
    raw_id = arguments.get("entry_id")
    try:
        entry_id = int(raw_id)
    except (TypeError, ValueError):
        raise ValueError(f"entry_id must be an integer, got {raw_id!r}") from None

    entry = await engine.require_entry(entry_id)
    tags = await engine.db.get_tags()

    return {
        "description": f"Suggest tags for entry {entry.id}",
        "messages": [
            {
                "role": "user",
                "content": {
                    "type": "text",
                    "text": (
                        f'Below is my EpicMe journal entry with ID "{entry.id}" and the tags I have available.\n\n'
                        "Please suggest some tags to add to it. Feel free to suggest new tags I don't have yet.\n\n"
                        'For each tag I approve, if it does not yet exist, create it with the EpicMe "create_tag" tool. '
                        'Then add approved tags to the entry with the EpicMe "add_tag_to_entry" tool.'
                    ),
                },
            },
            {
                "role": "user",
                "content": {
                    "type": "resource",
                    "resource": {
                        "uri": tags_list_uri(),
                        "mimeType": "application/json",
                        "text": json.dumps([t.to_dict() for t in tags], default=str),
                    },
                },
            },
            {
                "role": "user",
                "content": {
                    "type": "resource",
                    "resource": {
                        "uri": entry_uri(entry.id),
                        "mimeType": "application/json",
                        "text": json.dumps(entry.to_dict(), default=str),
                    },
                },
            },
        ],
    }
