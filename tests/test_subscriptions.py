"""Tests for per-resource subscriptions."""

import pytest

from epicme_mcp.events import ChangeSet, VideoChange
from epicme_mcp.subscriptions import SubscriptionRegistry

from conftest import RecordingNotifier


class FailOnceNotifier(RecordingNotifier):
    """Fails the first resource update for one URI."""

    def __init__(self, failing_uri):
        super().__init__()
        self.failing_uri = failing_uri

    async def send_resource_updated(self, uri, title):
        if uri == self.failing_uri:
            self.failing_uri = None
            raise ConnectionError("client went away")
        await super().send_resource_updated(uri, title)


@pytest.fixture
def registry(notifier):
    return SubscriptionRegistry(notifier)


class TestSubscriptionRegistry:
    """Tests for SubscriptionRegistry."""

    def test_subscribe_idempotent(self, registry):
        registry.subscribe("epicme://entries/1")
        registry.subscribe("epicme://entries/1")
        assert registry.uris == frozenset({"epicme://entries/1"})

    def test_unsubscribe_unknown_is_noop(self, registry):
        registry.unsubscribe("epicme://tags/9")
        assert not registry.is_subscribed("epicme://tags/9")

    @pytest.mark.asyncio
    async def test_only_subscribed_uris_notified(self, registry, notifier):
        registry.subscribe("epicme://entries/2")
        registry.subscribe("epicme://tags/7")

        notified = await registry.handle_change(ChangeSet.of(entry_ids=[1, 2], tag_ids=[7, 8]))

        assert notified == ["epicme://entries/2", "epicme://tags/7"]
        assert notifier.of_kind("resources/updated") == [
            ("resources/updated", "epicme://entries/2", "Entry 2"),
            ("resources/updated", "epicme://tags/7", "Tag 7"),
        ]

    @pytest.mark.asyncio
    async def test_no_subscribers_no_notifications(self, registry, notifier):
        assert await registry.handle_change(ChangeSet.of(entry_ids=[1])) == []
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_unsubscribed_uri_stops_notifications(self, registry, notifier):
        registry.subscribe("epicme://entries/1")
        registry.unsubscribe("epicme://entries/1")

        await registry.handle_change(ChangeSet.of(entry_ids=[1]))
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_video_change(self, registry, notifier):
        registry.subscribe("epicme://videos/wrapped-2026.mp4")

        notified = await registry.handle_video_change(
            VideoChange(names=frozenset({"wrapped-2026.mp4", "wrapped-2025.mp4"}))
        )

        assert notified == ["epicme://videos/wrapped-2026.mp4"]
        assert notifier.sent == [
            ("resources/updated", "epicme://videos/wrapped-2026.mp4", "Video wrapped-2026.mp4"),
        ]

    @pytest.mark.asyncio
    async def test_failed_update_does_not_block_other_uris(self):
        notifier = FailOnceNotifier("epicme://entries/1")
        registry = SubscriptionRegistry(notifier)
        for uri in ("epicme://entries/1", "epicme://entries/2", "epicme://tags/3"):
            registry.subscribe(uri)

        notified = await registry.handle_change(ChangeSet.of(entry_ids=[1, 2], tag_ids=[3]))

        assert notified == ["epicme://entries/2", "epicme://tags/3"]
        assert notifier.updated_uris() == ["epicme://entries/2", "epicme://tags/3"]
