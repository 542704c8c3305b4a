"""MCP tool definitions wrapping the EpicMe engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from .capabilities import CapabilityKind
from .errors import DuplicateTagError, EpicMeError, NotFoundError
from .models import entry_uri, tag_uri, utc_now
from .tag_suggestions import Sampler

if TYPE_CHECKING:
    from .engine import EpicMeEngine


@dataclass
class ToolContext:
    """Per-call hooks into the client session.

    Each hook is None when the client does not support it.
    """
    report_progress: Optional[Callable[[float], Awaitable[None]]] = None
    confirm: Optional[Callable[[str], Awaitable[bool]]] = None
    sample: Optional[Sampler] = None


ENTRY_PROPERTIES = {
    "title": {"type": "string", "description": "The title of the entry"},
    "content": {"type": "string", "description": "The content of the entry"},
    "mood": {
        "type": "string",
        "description": "The mood of the entry (for example: 'happy', 'sad', 'anxious', 'excited')",
    },
    "location": {
        "type": "string",
        "description": "The location of the entry (for example: 'home', 'work', 'school', 'park')",
    },
    "weather": {
        "type": "string",
        "description": "The weather of the entry (for example: 'sunny', 'cloudy', 'rainy', 'snowy')",
    },
    "is_private": {"type": "boolean", "description": "Whether the entry is private"},
    "is_favorite": {"type": "boolean", "description": "Whether the entry is a favorite"},
}

ENTRY_ID_SCHEMA = {
    "type": "object",
    "properties": {"id": {"type": "integer", "description": "The ID of the entry"}},
    "required": ["id"],
}

TAG_ID_SCHEMA = {
    "type": "object",
    "properties": {"id": {"type": "integer", "description": "The ID of the tag"}},
    "required": ["id"],
}


def make_tools() -> dict[str, dict]:
    """Create MCP tool definitions.

    Returns:
        Dict mapping tool names to their definitions.
    """

    tools = {}

    # ========== entries ==========
    tools["create_entry"] = {
        "name": "create_entry",
        "title": "Create Entry",
        "description": "Create a new journal entry",
        "annotations": {"destructiveHint": False, "openWorldHint": False},
        "inputSchema": {
            "type": "object",
            "properties": {
                **ENTRY_PROPERTIES,
                "tags": {
                    "type": "array",
                    "items": {"type": "integer"},
                    "description": "The IDs of the tags to add to the entry",
                },
            },
            "required": ["title", "content"],
        },
    }

    tools["get_entry"] = {
        "name": "get_entry",
        "title": "Get Entry",
        "description": "Get a journal entry by ID",
        "annotations": {"readOnlyHint": True, "openWorldHint": False},
        "inputSchema": ENTRY_ID_SCHEMA,
    }

    tools["list_entries"] = {
        "name": "list_entries",
        "title": "List Entries",
        "description": "List all journal entries",
        "annotations": {"readOnlyHint": True, "openWorldHint": False},
        "inputSchema": {"type": "object", "properties": {}},
    }

    tools["update_entry"] = {
        "name": "update_entry",
        "title": "Update Entry",
        "description": (
            "Update a journal entry. Fields that are not provided will not be updated. "
            "Fields that are set to null or any other value will be updated."
        ),
        "annotations": {"destructiveHint": False, "idempotentHint": True, "openWorldHint": False},
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {"type": "integer", "description": "The ID of the entry"},
                **ENTRY_PROPERTIES,
            },
            "required": ["id"],
        },
    }

    tools["delete_entry"] = {
        "name": "delete_entry",
        "title": "Delete Entry",
        "description": "Delete a journal entry",
        "annotations": {"idempotentHint": True, "openWorldHint": False},
        "inputSchema": ENTRY_ID_SCHEMA,
    }

    # ========== tags ==========
    tools["create_tag"] = {
        "name": "create_tag",
        "title": "Create Tag",
        "description": "Create a new tag",
        "annotations": {"destructiveHint": False, "openWorldHint": False},
        "inputSchema": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "The name of the tag"},
                "description": {"type": "string", "description": "The description of the tag"},
            },
            "required": ["name"],
        },
    }

    tools["get_tag"] = {
        "name": "get_tag",
        "title": "Get Tag",
        "description": "Get a tag by ID",
        "annotations": {"readOnlyHint": True, "openWorldHint": False},
        "inputSchema": TAG_ID_SCHEMA,
    }

    tools["list_tags"] = {
        "name": "list_tags",
        "title": "List Tags",
        "description": "List all tags",
        "annotations": {"readOnlyHint": True, "openWorldHint": False},
        "inputSchema": {"type": "object", "properties": {}},
    }

    tools["update_tag"] = {
        "name": "update_tag",
        "title": "Update Tag",
        "description": "Update a tag",
        "annotations": {"destructiveHint": False, "idempotentHint": True, "openWorldHint": False},
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {"type": "integer", "description": "The ID of the tag"},
                "name": {"type": "string", "description": "The name of the tag"},
                "description": {"type": "string", "description": "The description of the tag"},
            },
            "required": ["id"],
        },
    }

    tools["delete_tag"] = {
        "name": "delete_tag",
        "title": "Delete Tag",
        "description": "Delete a tag",
        "annotations": {"idempotentHint": True, "openWorldHint": False},
        "inputSchema": TAG_ID_SCHEMA,
    }

    tools["add_tag_to_entry"] = {
        "name": "add_tag_to_entry",
        "title": "Add Tag to Entry",
        "description": "Add a tag to an entry",
        "annotations": {"destructiveHint": False, "idempotentHint": True, "openWorldHint": False},
        "inputSchema": {
            "type": "object",
            "properties": {
                "entry_id": {"type": "integer", "description": "The ID of the entry"},
                "tag_id": {"type": "integer", "description": "The ID of the tag"},
            },
            "required": ["entry_id", "tag_id"],
        },
    }

    # ========== wrapped video ==========
    tools["create_wrapped_video"] = {
        "name": "create_wrapped_video",
        "title": "Create Wrapped Video",
        "description": 'Create a "wrapped" video highlighting stats of your journaling this year',
        "annotations": {"destructiveHint": False, "openWorldHint": False},
        "inputSchema": {
            "type": "object",
            "properties": {
                "year": {
                    "type": "integer",
                    "description": "The year to create a wrapped video for (defaults to current year)",
                },
                "mock_time": {
                    "type": "number",
                    "description": "If set to > 0, use mock mode and this is the mock wait time in milliseconds",
                },
                "cancel_after": {
                    "type": "number",
                    "description": "Cancel the render after this many milliseconds",
                },
            },
        },
    }

    return tools


def entry_link(entry) -> dict:
    return {
        "uri": entry_uri(entry.id),
        "name": entry.title,
        "description": f'Journal Entry: "{entry.title}"',
        "mimeType": "application/json",
    }


def tag_link(tag) -> dict:
    return {
        "uri": tag_uri(tag.id),
        "name": tag.name,
        "description": f'Tag: "{tag.name}"',
        "mimeType": "application/json",
    }


async def _confirm(context: ToolContext, message: str) -> bool:
    # Clients without elicitation support cannot be asked
    if context.confirm is None:
        return True
    return await context.confirm(message)


async def execute_tool(
    engine: "EpicMeEngine",
    name: str,
    arguments: dict[str, Any],
    context: Optional[ToolContext] = None,
) -> dict[str, Any]:
    """Execute a tool and return the result."""
    context = context or ToolContext()
    arguments = arguments or {}

    if engine.registry.get(CapabilityKind.TOOL, name) is None:
        return {
            "success": False,
            "error": f"Unknown tool: {name}",
        }

    if not engine.registry.is_enabled(CapabilityKind.TOOL, name):
        return {
            "success": False,
            "error": f"Tool {name} is disabled",
            "error_type": "tool_disabled",
        }

    try:
        if name == "create_entry":
            entry = await engine.create_entry(
                title=arguments["title"],
                content=arguments["content"],
                mood=arguments.get("mood"),
                location=arguments.get("location"),
                weather=arguments.get("weather"),
                is_private=arguments.get("is_private", True),
                is_favorite=arguments.get("is_favorite", False),
                tags=arguments.get("tags"),
                sample=context.sample,
            )
            return {
                "success": True,
                "entry": entry.to_dict(),
                "link": entry_link(entry),
                "message": f'Entry "{entry.title}" created successfully with ID "{entry.id}"',
            }

        elif name == "get_entry":
            entry = await engine.require_entry(arguments["id"])
            return {
                "success": True,
                "entry": entry.to_dict(),
                "link": entry_link(entry),
            }

        elif name == "list_entries":
            entries = await engine.db.get_entries()
            return {
                "success": True,
                "count": len(entries),
                "entries": [entry_link(e) for e in entries],
                "message": f"Found {len(entries)} entries.",
            }

        elif name == "update_entry":
            updates = {k: v for k, v in arguments.items() if k != "id"}
            entry = await engine.update_entry(arguments["id"], **updates)
            return {
                "success": True,
                "entry": entry.to_dict(),
                "link": entry_link(entry),
                "message": f'Entry "{entry.title}" (ID: {entry.id}) updated successfully',
            }

        elif name == "delete_entry":
            existing = await engine.require_entry(arguments["id"])
            confirmed = await _confirm(
                context,
                f'Are you sure you want to delete entry "{existing.title}" (ID: {existing.id})?',
            )
            if not confirmed:
                return {
                    "success": False,
                    "message": "Entry deletion cancelled",
                    "entry": existing.to_dict(),
                }
            await engine.delete_entry(existing.id)
            return {
                "success": True,
                "message": f'Entry "{existing.title}" (ID: {existing.id}) deleted successfully',
                "entry": existing.to_dict(),
            }

        elif name == "create_tag":
            tag = await engine.create_tag(
                name=arguments["name"],
                description=arguments.get("description"),
            )
            return {
                "success": True,
                "tag": tag.to_dict(),
                "link": tag_link(tag),
                "message": f'Tag "{tag.name}" created successfully with ID "{tag.id}"',
            }

        elif name == "get_tag":
            tag = await engine.require_tag(arguments["id"])
            return {
                "success": True,
                "tag": tag.to_dict(),
                "link": tag_link(tag),
            }

        elif name == "list_tags":
            tags = await engine.db.get_tags()
            return {
                "success": True,
                "count": len(tags),
                "tags": [tag_link(t) for t in tags],
                "message": f"Found {len(tags)} tags.",
            }

        elif name == "update_tag":
            updates = {k: v for k, v in arguments.items() if k != "id"}
            tag = await engine.update_tag(arguments["id"], **updates)
            return {
                "success": True,
                "tag": tag.to_dict(),
                "link": tag_link(tag),
                "message": f'Tag "{tag.name}" (ID: {tag.id}) updated successfully',
            }

        elif name == "delete_tag":
            existing = await engine.require_tag(arguments["id"])
            confirmed = await _confirm(
                context,
                f'Are you sure you want to delete tag "{existing.name}" (ID: {existing.id})?',
            )
            if not confirmed:
                return {
                    "success": False,
                    "message": "Tag deletion cancelled",
                    "tag": existing.to_dict(),
                }
            await engine.delete_tag(existing.id)
            return {
                "success": True,
                "message": f'Tag "{existing.name}" (ID: {existing.id}) deleted successfully',
                "tag": existing.to_dict(),
            }

        elif name == "add_tag_to_entry":
            link, entry, tag = await engine.add_tag_to_entry(
                entry_id=arguments["entry_id"],
                tag_id=arguments["tag_id"],
            )
            return {
                "success": True,
                "entry_tag": link.to_dict(),
                "message": (
                    f'Tag "{tag.name}" (ID: {tag.id}) added to entry '
                    f'"{entry.title}" (ID: {entry.id}) successfully'
                ),
            }

        elif name == "create_wrapped_video":
            year = arguments.get("year") or utc_now().year
            outcome = await engine.create_wrapped_video(
                year=year,
                mock_time=arguments.get("mock_time"),
                cancel_after=arguments.get("cancel_after"),
                on_progress=context.report_progress,
            )
            result = {"success": outcome["status"] == "succeeded", **outcome}
            if result["success"]:
                video_name = engine.renderer.output_name(year)
                result["link"] = {
                    "uri": outcome["video_uri"],
                    "name": video_name,
                    "description": f"Wrapped Video for {year}",
                    "mimeType": "video/mp4",
                }
                result["message"] = "Video created successfully"
            return result

        else:  # pragma: no cover - every registered tool is handled above
            return {
                "success": False,
                "error": f"Unknown tool: {name}",
            }

    except NotFoundError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "not_found",
            "suggestion": "Check that the referenced entry or tag exists",
        }

    except DuplicateTagError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "duplicate_tag",
            "suggestion": "Use list_tags to find the existing tag",
        }

    except KeyError as e:
        return {
            "success": False,
            "error": f"Missing required argument: {e.args[0]}",
            "error_type": "invalid_arguments",
        }

    except FileNotFoundError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "file_not_found",
        }

    except EpicMeError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "epicme_error",
        }

    except Exception as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "unexpected_error",
        }
