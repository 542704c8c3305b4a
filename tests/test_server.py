"""Tests for MCP server module."""

import json
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import epicme_mcp.server as server_module
from epicme_mcp.engine import EpicMeEngine

requires_mcp = pytest.mark.skipif(not server_module.HAS_MCP, reason="MCP not installed")


class TestServerImports:
    """Test server module imports and HAS_MCP flag."""

    def test_server_imports_without_mcp(self):
        """Server module is importable regardless of MCP availability."""
        assert hasattr(server_module, "HAS_MCP")
        assert hasattr(server_module, "create_server")
        assert hasattr(server_module, "run_server")
        assert hasattr(server_module, "main")

    @pytest.mark.asyncio
    async def test_create_server_without_mcp_raises(self, engine):
        if not server_module.HAS_MCP:
            with pytest.raises(ImportError, match="MCP package not installed"):
                server_module.create_server(engine)


@requires_mcp
class TestSessionNotifier:
    """Tests for forwarding notifications to a client session."""

    @pytest.mark.asyncio
    async def test_unbound_drops_silently(self):
        notifier = server_module.SessionNotifier()
        await notifier.send_tool_list_changed()
        await notifier.send_resource_updated("epicme://entries/1", "Entry 1")
        await notifier.send_log_message("error", {"message": "x"})

    @pytest.mark.asyncio
    async def test_list_changed_forwarded(self):
        session = AsyncMock()
        notifier = server_module.SessionNotifier()
        notifier.bind(session)

        await notifier.send_tool_list_changed()
        await notifier.send_resource_list_changed()
        await notifier.send_prompt_list_changed()

        session.send_tool_list_changed.assert_awaited_once()
        session.send_resource_list_changed.assert_awaited_once()
        session.send_prompt_list_changed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resource_updated_carries_title(self):
        session = AsyncMock()
        notifier = server_module.SessionNotifier()
        notifier.bind(session)

        await notifier.send_resource_updated("epicme://entries/1", "Entry 1")

        sent = session.send_notification.await_args.args[0].root
        assert sent.method == "notifications/resources/updated"
        assert str(sent.params.uri) == "epicme://entries/1"
        assert sent.params.title == "Entry 1"

    @pytest.mark.asyncio
    async def test_log_level_respected(self):
        session = AsyncMock()
        notifier = server_module.SessionNotifier("warning")
        notifier.bind(session)

        await notifier.send_log_message("info", {"message": "quiet"})
        await notifier.send_log_message("error", {"message": "loud"}, logger="tag-generator")

        session.send_log_message.assert_awaited_once_with(
            level="error", data={"message": "loud"}, logger="tag-generator"
        )


@requires_mcp
class TestSessionAdapters:
    """Tests for sampling, elicitation and progress wrappers."""

    @pytest.mark.asyncio
    async def test_sampler_returns_text(self):
        from mcp import types

        session = MagicMock()
        session.create_message = AsyncMock(return_value=types.CreateMessageResult(
            role="assistant",
            content=types.TextContent(type="text", text="[]"),
            model="test-model",
        ))

        sample = server_module.make_sampler(session)
        assert await sample("system", "user", 123) == "[]"
        kwargs = session.create_message.await_args.kwargs
        assert kwargs["max_tokens"] == 123
        assert kwargs["system_prompt"] == "system"

    @pytest.mark.asyncio
    async def test_confirm(self):
        session = MagicMock()
        session.elicit = AsyncMock(return_value=MagicMock(action="accept", content={"confirmed": True}))
        assert await server_module.make_confirm(session)("Delete?") is True

        session.elicit = AsyncMock(return_value=MagicMock(action="accept", content={"confirmed": False}))
        assert await server_module.make_confirm(session)("Delete?") is False

        session.elicit = AsyncMock(return_value=MagicMock(action="decline", content=None))
        assert await server_module.make_confirm(session)("Delete?") is False

    @pytest.mark.asyncio
    async def test_progress_reporter(self):
        session = AsyncMock()
        report = server_module.make_progress_reporter(session, "token-1")

        await report(0.5)

        session.send_progress_notification.assert_awaited_once_with(
            "token-1", progress=0.5, total=1.0, message="50%"
        )


@requires_mcp
class TestCreateServer:
    """Tests for the request handlers."""

    @pytest.mark.asyncio
    async def test_list_and_call_tools(self, config):
        from mcp import types

        engine = EpicMeEngine(config, server_module.SessionNotifier())
        await engine.initialize()
        try:
            server = server_module.create_server(engine)
            list_tools = server.request_handlers[types.ListToolsRequest]
            call_tool = server.request_handlers[types.CallToolRequest]

            result = await list_tools(types.ListToolsRequest(method="tools/list"))
            assert sorted(t.name for t in result.root.tools) == ["create_entry", "create_tag"]

            result = await call_tool(types.CallToolRequest(
                method="tools/call",
                params=types.CallToolRequestParams(
                    name="create_tag", arguments={"name": "work"}
                ),
            ))
            payload = json.loads(result.root.content[0].text)
            assert payload["success"] is True

            result = await list_tools(types.ListToolsRequest(method="tools/list"))
            assert "list_tags" in [t.name for t in result.root.tools]
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_initialization_options(self, config):
        engine = EpicMeEngine(config, server_module.SessionNotifier())
        await engine.initialize()
        try:
            server = server_module.create_server(engine)
            options = server_module.initialization_options(server)
            assert options.capabilities.tools.listChanged is True
            assert options.capabilities.prompts.listChanged is True
            assert options.capabilities.resources.subscribe is True
        finally:
            await engine.close()


class TestMain:
    """Tests for main entry point."""

    def test_main_init_mode(self, temp_project, monkeypatch):
        """main --init creates the database and videos directory."""
        monkeypatch.delenv("EPIC_ME_DB_PATH", raising=False)
        test_args = ["epicme-mcp", "--project-root", str(temp_project), "--init"]
        with patch.object(sys, "argv", test_args):
            with patch("builtins.print"):
                server_module.main()

        assert (temp_project / "db.sqlite").exists()
        assert (temp_project / "videos").is_dir()

    def test_main_db_path_flag(self, temp_project, monkeypatch):
        monkeypatch.delenv("EPIC_ME_DB_PATH", raising=False)
        test_args = [
            "epicme-mcp", "--project-root", str(temp_project), "--db-path", "data/custom.db", "--init",
        ]
        with patch.object(sys, "argv", test_args):
            with patch("builtins.print"):
                server_module.main()

        assert (temp_project / "data" / "custom.db").exists()

    def test_main_without_mcp_exits(self, temp_project):
        """main exits with error when MCP not available in server mode."""
        if not server_module.HAS_MCP:
            test_args = ["epicme-mcp", "--project-root", str(temp_project)]
            with patch.object(sys, "argv", test_args):
                with pytest.raises(SystemExit) as exc_info:
                    server_module.main()
                assert exc_info.value.code == 1

    def test_main_config_load_error(self, temp_project):
        """main handles config load errors."""
        (temp_project / "epicme_config.toml").write_text("invalid toml [[[")

        test_args = ["epicme-mcp", "--project-root", str(temp_project)]
        with patch.object(sys, "argv", test_args):
            with pytest.raises(SystemExit) as exc_info:
                server_module.main()
            assert exc_info.value.code == 1
