"""Model-suggested tags for new entries.

After an entry is created the server asks the connected model (sampling)
to suggest tags. The reply is untrusted free text that should contain a
JSON array whose elements are either ``{"id": <int>}`` (an existing tag)
or ``{"name": <str>, "description": <str>?}`` (a new tag).

Reconciliation resolves the whole batch before touching storage, so a
bad reply never leaves an entry partially tagged.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from .errors import NotFoundError, TagSuggestionError, TagSuggestionParseError, TagSuggestionSchemaError
from .models import Tag
from .notifications import Notifier
from .storage import Database

log = logging.getLogger(__name__)

# (system_prompt, user_text, max_tokens) -> model reply text
Sampler = Callable[[str, str, int], Awaitable[str]]

SYSTEM_PROMPT = """
You are a helpful assistant that suggests relevant tags for journal entries to make them easier to categorize and find later.
You will be provided with a journal entry, its current tags, and all existing tags.
Only suggest tags that are not already applied to this entry.
Journal entries should not have more than 4-5 tags and it's perfectly fine to not have any tags at all.
Feel free to suggest a new tag that is not currently in the database and it will be created.

You will respond with JSON only.
Example responses:
If you have no suggestions, respond with an empty array:
[]

If you have some suggestions, respond with an array of tag objects. Existing tags have an "id" property, new tags have a "name" and "description" property:
[{"id": 1}, {"name": "New Tag", "description": "The description of the new tag"}, {"id": 24}]
""".strip()


@dataclass(frozen=True)
class ExistingTagRef:
    """Suggestion referencing a tag that should already exist."""
    id: int


@dataclass(frozen=True)
class NewTagSpec:
    """Suggestion for a tag that may need to be created."""
    name: str
    description: Optional[str] = None


Suggestion = Union[ExistingTagRef, NewTagSpec]


@dataclass
class ResolvedSuggestions:
    """Outcome of resolving a batch against the stored tags."""
    new_tags: list[NewTagSpec] = field(default_factory=list)
    existing_ids: list[int] = field(default_factory=list)


@dataclass
class ReconcileResult:
    """Tags attached by one reconciliation."""
    attached_ids: list[int] = field(default_factory=list)
    created_tags: list[Tag] = field(default_factory=list)


def parse_suggestion(item: Any) -> Optional[Suggestion]:
    """Parse one array element, or return None if it matches neither shape."""
    if not isinstance(item, dict):
        return None

    tag_id = item.get("id")
    # bool is an int subclass but never a valid id
    if isinstance(tag_id, int) and not isinstance(tag_id, bool):
        return ExistingTagRef(id=tag_id)

    name = item.get("name")
    description = item.get("description")
    if isinstance(name, str) and (description is None or isinstance(description, str)):
        return NewTagSpec(name=name, description=description)

    return None


def parse_suggestions(text: str) -> list[Suggestion]:
    """Parse a model reply into tag suggestions.

    Elements matching neither shape are dropped.

    Raises:
        TagSuggestionParseError: If the text is not JSON
        TagSuggestionSchemaError: If the JSON value is not an array
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise TagSuggestionParseError(f"Model response is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise TagSuggestionSchemaError(
            f"Model response must be a JSON array, got {type(data).__name__}"
        )

    suggestions = []
    for item in data:
        suggestion = parse_suggestion(item)
        if suggestion is None:
            log.debug("Dropping malformed tag suggestion: %r", item)
            continue
        suggestions.append(suggestion)
    return suggestions


def resolve_suggestions(
    suggestions: list[Suggestion],
    existing_tags: list[Tag],
    current_tags: list[Tag],
) -> ResolvedSuggestions:
    """Partition suggestions into tags to create and existing ids to attach.

    Names that match an existing tag are rewritten to references to it.
    References to unknown ids or to tags already on the entry are dropped.
    """
    id_by_name = {t.name: t.id for t in existing_tags}
    existing_ids = {t.id for t in existing_tags}
    current_ids = {t.id for t in current_tags}

    resolved = ResolvedSuggestions()
    seen_ids: set[int] = set()
    seen_names: set[str] = set()

    for suggestion in suggestions:
        if isinstance(suggestion, NewTagSpec) and suggestion.name in id_by_name:
            suggestion = ExistingTagRef(id=id_by_name[suggestion.name])

        if isinstance(suggestion, ExistingTagRef):
            tag_id = suggestion.id
            if tag_id in existing_ids and tag_id not in current_ids and tag_id not in seen_ids:
                seen_ids.add(tag_id)
                resolved.existing_ids.append(tag_id)
        elif suggestion.name not in seen_names:
            seen_names.add(suggestion.name)
            resolved.new_tags.append(suggestion)

    return resolved


async def reconcile_tag_suggestions(db: Database, entry_id: int, text: str) -> ReconcileResult:
    """Apply a model reply to an entry's tags.

    Raises:
        NotFoundError: If the entry does not exist
        TagSuggestionError: If the reply cannot be parsed; nothing is
            created or attached in that case
    """
    entry = await db.get_entry(entry_id)
    if entry is None:
        raise NotFoundError(f'Entry with ID "{entry_id}" not found')

    suggestions = parse_suggestions(text)
    resolved = resolve_suggestions(suggestions, await db.get_tags(), entry.tags)

    result = ReconcileResult()
    ids_to_add = list(resolved.existing_ids)
    for spec in resolved.new_tags:
        tag = await db.create_tag(name=spec.name, description=spec.description)
        result.created_tags.append(tag)
        ids_to_add.append(tag.id)

    for tag_id in ids_to_add:
        await db.add_tag_to_entry(entry_id, tag_id)
        result.attached_ids.append(tag_id)
    return result


def build_sampling_message(entry: dict, current_tags: list[Tag], existing_tags: list[Tag]) -> str:
    """JSON payload describing the entry and the tag vocabulary."""
    return json.dumps({
        "entry": entry,
        "currentTags": [t.to_dict() for t in current_tags],
        "existingTags": [t.to_dict() for t in existing_tags],
    })


async def suggest_tags(
    db: Database,
    notifier: Notifier,
    sample: Sampler,
    entry_id: int,
    max_tokens: int = 1000,
) -> Optional[ReconcileResult]:
    """Ask the model for tags and attach them to the entry.

    Unusable replies are logged and abandoned; they never propagate, since
    the entry creation that triggered this has already succeeded.

    Returns:
        The reconciliation result, or None if the reply was unusable
    """
    entry = await db.get_entry(entry_id)
    if entry is None:
        raise NotFoundError(f'Entry with ID "{entry_id}" not found')

    existing_tags = await db.get_tags()
    payload = build_sampling_message(entry.to_dict(), entry.tags, existing_tags)
    reply = await sample(SYSTEM_PROMPT, payload, max_tokens)

    try:
        result = await reconcile_tag_suggestions(db, entry_id, reply)
    except TagSuggestionError as e:
        log.error("Error parsing tag suggestions for entry %s: %s", entry_id, e)
        await notifier.send_log_message(
            "error",
            {
                "message": "Error parsing tag suggestions",
                "modelResponse": reply,
                "error": str(e),
            },
            logger="tag-generator",
        )
        return None

    added = [t.to_dict() for t in await db.get_tags() if t.id in set(result.attached_ids)]
    updated = await db.get_entry(entry_id)
    await notifier.send_log_message(
        "info",
        {
            "message": "Added tags to entry",
            "addedTags": added,
            "entry": updated.to_dict() if updated else None,
        },
        logger="tag-generator",
    )
    return result
