"""Tests for MCP tool definitions and execution."""

import pytest

from epicme_mcp.tools import ToolContext, execute_tool, make_tools


class TestMakeTools:
    """Tests for make_tools function."""

    def test_make_tools_returns_all_tools(self):
        """make_tools returns all expected tool definitions."""
        tools = make_tools()

        expected_tools = [
            "create_entry",
            "get_entry",
            "list_entries",
            "update_entry",
            "delete_entry",
            "create_tag",
            "get_tag",
            "list_tags",
            "update_tag",
            "delete_tag",
            "add_tag_to_entry",
            "create_wrapped_video",
        ]

        assert sorted(tools) == sorted(expected_tools)
        for tool_name in expected_tools:
            assert "description" in tools[tool_name]
            assert "inputSchema" in tools[tool_name]

    def test_tool_schema_structure(self):
        """Tool schemas have proper structure."""
        for tool_name, tool_def in make_tools().items():
            assert tool_def["name"] == tool_name
            assert isinstance(tool_def["description"], str)
            assert tool_def["inputSchema"]["type"] == "object"

    def test_read_only_hints(self):
        tools = make_tools()
        assert tools["get_entry"]["annotations"]["readOnlyHint"] is True
        assert tools["list_tags"]["annotations"]["readOnlyHint"] is True


class TestExecuteTool:
    """Tests for execute_tool function."""

    @pytest.mark.asyncio
    async def test_disabled_tool_rejected(self, engine):
        """Tools hidden by the current state cannot be called."""
        result = await execute_tool(engine, "get_entry", {"id": 1})

        assert result["success"] is False
        assert result["error_type"] == "tool_disabled"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, engine):
        result = await execute_tool(engine, "nonexistent_tool", {})
        assert result["success"] is False
        assert "Unknown tool" in result["error"]

    @pytest.mark.asyncio
    async def test_create_and_get_entry(self, engine):
        result = await execute_tool(engine, "create_entry", {"title": "Hello", "content": "World"})

        assert result["success"] is True
        assert result["entry"]["id"] == 1
        assert result["link"]["uri"] == "epicme://entries/1"

        result = await execute_tool(engine, "get_entry", {"id": 1})
        assert result["entry"]["title"] == "Hello"
        assert result["entry"]["is_private"] is True

    @pytest.mark.asyncio
    async def test_get_missing_entry(self, engine):
        await execute_tool(engine, "create_entry", {"title": "Hello", "content": "World"})

        result = await execute_tool(engine, "get_entry", {"id": 99})

        assert result["success"] is False
        assert result["error_type"] == "not_found"

    @pytest.mark.asyncio
    async def test_missing_argument(self, engine):
        result = await execute_tool(engine, "create_entry", {"title": "no content"})
        assert result["success"] is False
        assert result["error_type"] == "invalid_arguments"
        assert "content" in result["error"]

    @pytest.mark.asyncio
    async def test_update_entry(self, engine):
        await execute_tool(engine, "create_entry", {"title": "Hello", "content": "World", "mood": "ok"})

        result = await execute_tool(engine, "update_entry", {"id": 1, "mood": None, "is_favorite": True})

        assert result["success"] is True
        assert result["entry"]["mood"] is None
        assert result["entry"]["is_favorite"] is True
        assert result["entry"]["content"] == "World"

    @pytest.mark.asyncio
    async def test_list_entries(self, engine):
        await execute_tool(engine, "create_entry", {"title": "A", "content": "1"})
        await execute_tool(engine, "create_entry", {"title": "B", "content": "2"})

        result = await execute_tool(engine, "list_entries", {})

        assert result["count"] == 2
        assert [e["name"] for e in result["entries"]] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_duplicate_tag(self, engine):
        await execute_tool(engine, "create_tag", {"name": "work"})
        result = await execute_tool(engine, "create_tag", {"name": "work"})
        assert result["success"] is False
        assert result["error_type"] == "duplicate_tag"

    @pytest.mark.asyncio
    async def test_update_tag_null_name(self, engine):
        await execute_tool(engine, "create_tag", {"name": "work"})
        result = await execute_tool(engine, "update_tag", {"id": 1, "name": None, "description": "d"})
        assert result["success"] is True
        assert result["tag"]["name"] == "work"
        assert result["tag"]["description"] == "d"

    @pytest.mark.asyncio
    async def test_add_tag_to_entry(self, engine):
        await execute_tool(engine, "create_entry", {"title": "Hello", "content": "World"})
        await execute_tool(engine, "create_tag", {"name": "work"})

        result = await execute_tool(engine, "add_tag_to_entry", {"entry_id": 1, "tag_id": 1})

        assert result["success"] is True
        assert result["entry_tag"] == {"entry_id": 1, "tag_id": 1}
        entry = await execute_tool(engine, "get_entry", {"id": 1})
        assert entry["entry"]["tags"] == [{"id": 1, "name": "work"}]

    @pytest.mark.asyncio
    async def test_delete_without_elicitation_proceeds(self, engine):
        await execute_tool(engine, "create_tag", {"name": "work"})

        result = await execute_tool(engine, "delete_tag", {"id": 1})

        assert result["success"] is True
        assert await engine.db.get_tags() == []

    @pytest.mark.asyncio
    async def test_declined_delete_keeps_entry(self, engine):
        await execute_tool(engine, "create_entry", {"title": "Keep", "content": "me"})
        questions = []

        async def confirm(message):
            questions.append(message)
            return False

        result = await execute_tool(engine, "delete_entry", {"id": 1}, ToolContext(confirm=confirm))

        assert result["success"] is False
        assert result["message"] == "Entry deletion cancelled"
        assert '"Keep"' in questions[0]
        assert await engine.db.get_entry(1) is not None

    @pytest.mark.asyncio
    async def test_confirmed_delete(self, engine):
        await execute_tool(engine, "create_entry", {"title": "Gone", "content": "soon"})

        async def confirm(message):
            return True

        result = await execute_tool(engine, "delete_entry", {"id": 1}, ToolContext(confirm=confirm))

        assert result["success"] is True
        assert await engine.db.get_entry(1) is None

    @pytest.mark.asyncio
    async def test_wrapped_video_simulated(self, engine):
        await execute_tool(engine, "create_entry", {"title": "Hello", "content": "World"})
        await execute_tool(engine, "create_tag", {"name": "work"})
        progress = []

        async def report(value):
            progress.append(value)

        result = await execute_tool(
            engine,
            "create_wrapped_video",
            {"year": 2025, "mock_time": 20},
            ToolContext(report_progress=report),
        )

        assert result["success"] is True
        assert result["status"] == "succeeded"
        assert result["link"]["uri"] == "epicme://videos/wrapped-2025.mp4"
        assert result["link"]["mimeType"] == "video/mp4"
        assert progress[-1] == 1.0

    @pytest.mark.asyncio
    async def test_wrapped_video_cancelled(self, engine):
        await execute_tool(engine, "create_entry", {"title": "Hello", "content": "World"})
        await execute_tool(engine, "create_tag", {"name": "work"})

        result = await execute_tool(
            engine,
            "create_wrapped_video",
            {"year": 2025, "mock_time": 2000, "cancel_after": 20},
        )

        assert result["success"] is False
        assert result["status"] == "cancelled"
