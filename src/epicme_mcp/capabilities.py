"""Dynamic capability exposure.

Which tools, resources and prompts a client may see depends on what is
stored: there is nothing to tag before a tag exists, no entry resource
before an entry exists, and so on. Each capability carries a predicate
over entity counts; after every change the state machine recomputes the
counts, flips any flag whose predicate changed, and sends one list-changed
notification per kind that had at least one flip.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .notifications import Notifier

log = logging.getLogger(__name__)


class CapabilityKind(Enum):
    """Kind of exposed capability."""
    TOOL = "tool"
    RESOURCE = "resource"
    PROMPT = "prompt"


@dataclass(frozen=True)
class EntityCounts:
    """Full entity counts a predicate is evaluated over."""
    entry_count: int = 0
    tag_count: int = 0
    video_count: int = 0


Predicate = Callable[[EntityCounts], bool]


def always(counts: EntityCounts) -> bool:
    return True


def has_entries(counts: EntityCounts) -> bool:
    return counts.entry_count > 0


def has_tags(counts: EntityCounts) -> bool:
    return counts.tag_count > 0


def has_entries_and_tags(counts: EntityCounts) -> bool:
    return counts.entry_count > 0 and counts.tag_count > 0


def has_videos(counts: EntityCounts) -> bool:
    return counts.video_count > 0


DEFAULT_PREDICATES: dict[CapabilityKind, dict[str, Predicate]] = {
    CapabilityKind.TOOL: {
        "create_entry": always,
        "get_entry": has_entries,
        "list_entries": has_entries,
        "update_entry": has_entries,
        "delete_entry": has_entries,
        "create_tag": always,
        "get_tag": has_tags,
        "list_tags": has_tags,
        "update_tag": has_tags,
        "delete_tag": has_tags,
        "add_tag_to_entry": has_entries_and_tags,
        "create_wrapped_video": has_entries_and_tags,
    },
    CapabilityKind.RESOURCE: {
        "tags": has_tags,
        "tag": has_tags,
        "entry": has_entries,
        "video": has_videos,
    },
    CapabilityKind.PROMPT: {
        "suggest_tags": has_entries,
    },
}


class RegisteredCapability:
    """Registry handle for one named tool, resource or prompt."""

    def __init__(self, name: str, kind: CapabilityKind, definition: Optional[dict] = None):
        self.name = name
        self.kind = kind
        self.definition = definition or {}
        self._enabled = False

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def __repr__(self) -> str:
        state = "enabled" if self._enabled else "disabled"
        return f"<{self.kind.value} {self.name} {state}>"


class CapabilityRegistry:
    """Named capabilities grouped by kind."""

    def __init__(self):
        self._items: dict[CapabilityKind, dict[str, RegisteredCapability]] = {
            kind: {} for kind in CapabilityKind
        }

    def register(self, kind: CapabilityKind, name: str, definition: Optional[dict] = None) -> RegisteredCapability:
        """Register a capability. It starts disabled.

        Raises:
            ValueError: If the name is already registered for this kind
        """
        if name in self._items[kind]:
            raise ValueError(f"{kind.value} '{name}' is already registered")
        handle = RegisteredCapability(name, kind, definition)
        self._items[kind][name] = handle
        return handle

    def get(self, kind: CapabilityKind, name: str) -> Optional[RegisteredCapability]:
        return self._items[kind].get(name)

    def all(self, kind: CapabilityKind) -> list[RegisteredCapability]:
        return list(self._items[kind].values())

    def enabled(self, kind: CapabilityKind) -> list[RegisteredCapability]:
        """Enabled capabilities of one kind, in registration order."""
        return [c for c in self._items[kind].values() if c.enabled]

    def is_enabled(self, kind: CapabilityKind, name: str) -> bool:
        handle = self.get(kind, name)
        return handle is not None and handle.enabled


@dataclass
class CapabilityFlag:
    """Derived enabled state of one capability."""
    name: str
    kind: CapabilityKind
    predicate: Predicate
    enabled: bool = False


class CapabilityStateMachine:
    """Recompute-and-diff owner of every capability flag.

    Flags only change here; handlers never enable or disable a capability
    themselves.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        notifier: Notifier,
        counter: Callable[[], Awaitable[EntityCounts]],
    ):
        self.registry = registry
        self.notifier = notifier
        self._counter = counter
        self._flags: dict[CapabilityKind, dict[str, CapabilityFlag]] = {
            kind: {} for kind in CapabilityKind
        }

    def watch(self, kind: CapabilityKind, name: str, predicate: Predicate) -> CapabilityFlag:
        """Start deriving a registered capability's state from ``predicate``.

        Raises:
            KeyError: If the capability is not registered
        """
        handle = self.registry.get(kind, name)
        if handle is None:
            raise KeyError(f"{kind.value} '{name}' is not registered")
        flag = CapabilityFlag(name=name, kind=kind, predicate=predicate, enabled=handle.enabled)
        self._flags[kind][name] = flag
        return flag

    def flag(self, kind: CapabilityKind, name: str) -> CapabilityFlag:
        return self._flags[kind][name]

    def flags(self, kind: CapabilityKind) -> list[CapabilityFlag]:
        return list(self._flags[kind].values())

    def apply(self, counts: EntityCounts) -> dict[CapabilityKind, list[str]]:
        """Evaluate every predicate and flip flags that changed.

        Sends nothing; used directly at startup and by refresh().

        Returns:
            Names flipped, per kind (kinds without flips are omitted)
        """
        flipped: dict[CapabilityKind, list[str]] = {}
        for kind, flags in self._flags.items():
            for flag in flags.values():
                target = bool(flag.predicate(counts))
                if target == flag.enabled:
                    continue
                flag.enabled = target
                handle = self.registry.get(kind, flag.name)
                if target:
                    handle.enable()
                else:
                    handle.disable()
                flipped.setdefault(kind, []).append(flag.name)
        return flipped

    async def refresh(self) -> dict[CapabilityKind, list[str]]:
        """Recount, flip, and send one list-changed per kind with flips."""
        counts = await self._counter()
        flipped = self.apply(counts)
        for kind, names in flipped.items():
            log.info("%s capabilities changed: %s", kind.value, ", ".join(names))
            try:
                await self._send_list_changed(kind)
            except Exception:
                log.exception("Failed to send %s list-changed notification", kind.value)
        return flipped

    async def handle_change(self, payload: Any) -> None:
        """Bus listener: any committed change triggers a full refresh."""
        await self.refresh()

    async def _send_list_changed(self, kind: CapabilityKind) -> None:
        if kind is CapabilityKind.TOOL:
            await self.notifier.send_tool_list_changed()
        elif kind is CapabilityKind.RESOURCE:
            await self.notifier.send_resource_list_changed()
        else:
            await self.notifier.send_prompt_list_changed()

    def stale_flags(self, counts: EntityCounts) -> list[CapabilityFlag]:
        """Flags that disagree with their predicate over ``counts``."""
        return [
            flag
            for flags in self._flags.values()
            for flag in flags.values()
            if flag.enabled != bool(flag.predicate(counts))
        ]
