"""Per-resource subscriptions.

Clients subscribe to individual resource URIs; every ChangeSet (and every
published video) is filtered down to one update notification per
subscribed URI it touches.
"""

from __future__ import annotations

import logging

from .events import ChangeSet, VideoChange
from .models import entry_uri, tag_uri, video_uri
from .notifications import Notifier

log = logging.getLogger(__name__)


class SubscriptionRegistry:
    """Watched URIs for the connected client."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        self._uris: set[str] = set()

    def subscribe(self, uri: str) -> None:
        """Watch a URI. Subscribing twice is a no-op."""
        if uri not in self._uris:
            log.info("Subscribed to %s", uri)
        self._uris.add(uri)

    def unsubscribe(self, uri: str) -> None:
        """Stop watching a URI. Unknown URIs are ignored."""
        if uri in self._uris:
            log.info("Unsubscribed from %s", uri)
        self._uris.discard(uri)

    def is_subscribed(self, uri: str) -> bool:
        return uri in self._uris

    @property
    def uris(self) -> frozenset[str]:
        return frozenset(self._uris)

    async def handle_change(self, change: ChangeSet) -> list[str]:
        """Notify for each subscribed entry/tag URI in the ChangeSet.

        Returns:
            URIs notified, in the order they were sent
        """
        notified = []
        for entry_id in sorted(change.entry_ids):
            uri = entry_uri(entry_id)
            if uri in self._uris and await self._send(uri, f"Entry {entry_id}"):
                notified.append(uri)

        for tag_id in sorted(change.tag_ids):
            uri = tag_uri(tag_id)
            if uri in self._uris and await self._send(uri, f"Tag {tag_id}"):
                notified.append(uri)
        return notified

    async def handle_video_change(self, change: VideoChange) -> list[str]:
        """Notify for each subscribed video URI that was just published."""
        notified = []
        for name in sorted(change.names):
            uri = video_uri(name)
            if uri in self._uris and await self._send(uri, f"Video {name}"):
                notified.append(uri)
        return notified

    async def _send(self, uri: str, title: str) -> bool:
        try:
            await self.notifier.send_resource_updated(uri, title)
        except Exception:
            log.exception("Failed to send resource update for %s", uri)
            return False
        return True
