"""Tests for the EpicMe engine wiring."""

import asyncio

import pytest

from epicme_mcp.capabilities import CapabilityKind
from epicme_mcp.engine import EpicMeEngine
from epicme_mcp.errors import NotFoundError

from conftest import FailingToolsNotifier


def enabled_names(engine, kind):
    return sorted(c.name for c in engine.registry.enabled(kind))


class TestInitialize:
    """Tests for startup state."""

    @pytest.mark.asyncio
    async def test_empty_database(self, engine, notifier):
        """Only the creation tools are exposed and nothing is announced."""
        assert enabled_names(engine, CapabilityKind.TOOL) == ["create_entry", "create_tag"]
        assert enabled_names(engine, CapabilityKind.RESOURCE) == []
        assert enabled_names(engine, CapabilityKind.PROMPT) == []
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_existing_data_enables_on_start(self, config, notifier):
        first = EpicMeEngine(config, notifier)
        await first.initialize()
        await first.create_tag("seed")
        await first.create_entry("Seed", "content")
        await first.close()

        second = EpicMeEngine(config, notifier)
        await second.initialize()
        try:
            assert "add_tag_to_entry" in enabled_names(second, CapabilityKind.TOOL)
            assert enabled_names(second, CapabilityKind.PROMPT) == ["suggest_tags"]
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_initialize_twice_is_noop(self, engine):
        await engine.initialize()
        assert engine.db.bus.listener_count == 2


class TestMutations:
    """Tests for mutations flowing through the buses."""

    @pytest.mark.asyncio
    async def test_first_entry_announces_each_kind_once(self, engine, notifier):
        await engine.create_entry("First", "content")

        assert sorted(notifier.list_changed()) == [
            "prompts/list_changed",
            "resources/list_changed",
            "tools/list_changed",
        ]

    @pytest.mark.asyncio
    async def test_failed_tool_notification_keeps_other_kinds(self, config):
        notifier = FailingToolsNotifier()
        eng = EpicMeEngine(config, notifier)
        await eng.initialize()
        try:
            await eng.create_entry("t", "c")
            assert sorted(notifier.list_changed()) == ["prompts/list_changed", "resources/list_changed"]
            assert "suggest_tags" in enabled_names(eng, CapabilityKind.PROMPT)
        finally:
            await eng.close()

    @pytest.mark.asyncio
    async def test_second_entry_announces_nothing(self, engine, notifier):
        await engine.create_entry("First", "content")
        notifier.clear()
        await engine.create_entry("Second", "content")
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_list_changed_precedes_resource_update(self, engine, notifier):
        """Capability flags settle before subscribers hear about the change."""
        tag = await engine.create_tag("t")
        engine.subscriptions.subscribe("epicme://entries/1")
        notifier.clear()

        await engine.create_entry("First", "content", tags=[tag.id])

        kinds = [n[0] for n in notifier.sent]
        assert kinds.index("tools/list_changed") < kinds.index("resources/updated")
        assert notifier.updated_uris() == ["epicme://entries/1", "epicme://entries/1"]

    @pytest.mark.asyncio
    async def test_unknown_tag_creates_nothing(self, engine):
        with pytest.raises(NotFoundError):
            await engine.create_entry("First", "content", tags=[42])
        assert await engine.db.get_entries() == []

    @pytest.mark.asyncio
    async def test_delete_last_tag_disables(self, engine, notifier):
        entry = await engine.create_entry("First", "content")
        tag = await engine.create_tag("t")
        await engine.add_tag_to_entry(entry.id, tag.id)
        assert engine.registry.is_enabled(CapabilityKind.TOOL, "create_wrapped_video")

        await engine.delete_tag(tag.id)

        assert not engine.registry.is_enabled(CapabilityKind.TOOL, "create_wrapped_video")
        assert not engine.registry.is_enabled(CapabilityKind.RESOURCE, "tags")

    @pytest.mark.asyncio
    async def test_add_tag_returns_both_sides(self, engine):
        entry = await engine.create_entry("First", "content")
        tag = await engine.create_tag("t")

        link, updated, attached = await engine.add_tag_to_entry(entry.id, tag.id)

        assert link.to_dict() == {"entry_id": entry.id, "tag_id": tag.id}
        assert [t.id for t in updated.tags] == [tag.id]
        assert attached.name == "t"


class TestTagSuggestionTask:
    """Tests for background tag suggestions."""

    @pytest.mark.asyncio
    async def test_suggestions_attached_in_background(self, engine):
        async def sample(system_prompt, user_text, max_tokens):
            return '[{"name": "brandnew"}]'

        entry = await engine.create_entry("First", "content", sample=sample)
        await engine.drain()

        tags = await engine.db.get_entry_tags(entry.id)
        assert [t.name for t in tags] == ["brandnew"]

    @pytest.mark.asyncio
    async def test_sampler_failure_is_contained(self, engine):
        async def sample(system_prompt, user_text, max_tokens):
            raise RuntimeError("client went away")

        entry = await engine.create_entry("First", "content", sample=sample)
        await engine.drain()

        assert await engine.db.get_entry(entry.id) is not None
        assert await engine.db.get_tags() == []


class TestWrappedVideo:
    """Tests for create_wrapped_video."""

    @pytest.mark.asyncio
    async def test_simulated_render(self, engine):
        seen = []
        outcome = await engine.create_wrapped_video(year=2025, mock_time=20, on_progress=seen.append)

        assert outcome["status"] == "succeeded"
        assert outcome["video_uri"] == "epicme://videos/wrapped-2025.mp4"
        assert len(seen) == 10
        assert engine.active_jobs == {}

    @pytest.mark.asyncio
    async def test_cancel_after(self, engine):
        outcome = await engine.create_wrapped_video(year=2025, mock_time=2000, cancel_after=30)

        assert outcome["status"] == "cancelled"
        assert outcome["progress"] < 1.0

    @pytest.mark.asyncio
    async def test_cancel_render_by_id(self, engine):
        assert engine.cancel_render("missing") is False

        task = asyncio.ensure_future(engine.create_wrapped_video(year=2025, mock_time=2000))
        await asyncio.sleep(0.05)
        (job_id,) = engine.active_jobs
        assert engine.cancel_render(job_id) is True

        outcome = await task
        assert outcome["status"] == "cancelled"
        assert outcome["job_id"] == job_id

    @pytest.mark.asyncio
    async def test_missing_renderer_propagates(self, engine):
        engine.renderer.ffmpeg = "definitely-not-an-ffmpeg-binary"
        with pytest.raises(FileNotFoundError):
            await engine.create_wrapped_video(year=2025)
        assert engine.active_jobs == {}
