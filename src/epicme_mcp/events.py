"""Mutation event bus.

Storage and the video library publish one payload per committed change;
the bus fans it out to every registered listener in registration order.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ChangeSet:
    """Entities touched by one committed storage write."""
    entry_ids: frozenset[int] = field(default_factory=frozenset)
    tag_ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def of(cls, entry_ids=(), tag_ids=()) -> "ChangeSet":
        return cls(entry_ids=frozenset(entry_ids), tag_ids=frozenset(tag_ids))

    def is_empty(self) -> bool:
        return not self.entry_ids and not self.tag_ids


@dataclass(frozen=True)
class VideoChange:
    """Video artifacts published by one render."""
    names: frozenset[str] = field(default_factory=frozenset)


class MutationBus(Generic[T]):
    """Synchronous fan-out of change payloads to listeners.

    Listeners may be plain callables or coroutine functions. A failing
    listener is logged and skipped; it never stops delivery to the
    remaining listeners and never propagates to the publisher.
    """

    def __init__(self, name: str = "mutations"):
        self.name = name
        self._listeners: list[Callable[[T], Any]] = []

    def subscribe(self, listener: Callable[[T], Any]) -> Callable[[], None]:
        """Register a listener.

        Returns:
            A function that removes the listener. Calling it more than
            once is harmless.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(self, payload: T) -> list[BaseException]:
        """Deliver ``payload`` to every listener registered right now.

        Returns:
            Exceptions raised by listeners, in delivery order.
        """
        failures: list[BaseException] = []
        # Snapshot so (un)subscribing mid-dispatch leaves this dispatch alone
        for listener in list(self._listeners):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                log.exception("%s listener %r failed", self.name, listener)
                failures.append(e)
        return failures
