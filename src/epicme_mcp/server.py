"""EpicMe MCP Server - Main entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

# MCP imports are optional - only needed when running the server
try:
    from mcp import types  # pragma: no cover
    from mcp.server import NotificationOptions, Server  # pragma: no cover
    from mcp.server.lowlevel.helper_types import ReadResourceContents  # pragma: no cover
    from mcp.server.stdio import stdio_server  # pragma: no cover
    from pydantic import AnyUrl  # pragma: no cover
    HAS_MCP = True  # pragma: no cover
except ImportError:
    HAS_MCP = False
    Server = None  # type: ignore
    types = None  # type: ignore

from .capabilities import CapabilityKind
from .config import ServerConfig, load_config
from .engine import EpicMeEngine
from .notifications import Notifier
from .prompts import get_prompt
from .resources import list_resource_templates, list_resources, read_resource
from .tools import ToolContext, execute_tool

log = logging.getLogger(__name__)

INSTALL_HINT = "MCP package not installed. Install with: pip install epicme-mcp[mcp]"

CONFIRM_SCHEMA = {
    "type": "object",
    "properties": {
        "confirmed": {
            "type": "boolean",
            "description": "Whether to confirm the action",
        },
    },
}


class SessionNotifier(Notifier):
    """Notifier that forwards to the most recently seen client session.

    Until a request binds a session every notification is dropped.
    """

    def __init__(self, logging_level: str = "info"):
        super().__init__(logging_level)
        self.session: Any = None

    def bind(self, session: Any) -> None:
        self.session = session

    async def send_tool_list_changed(self) -> None:
        if self.session is None:
            return await super().send_tool_list_changed()
        await self.session.send_tool_list_changed()

    async def send_resource_list_changed(self) -> None:
        if self.session is None:
            return await super().send_resource_list_changed()
        await self.session.send_resource_list_changed()

    async def send_prompt_list_changed(self) -> None:
        if self.session is None:
            return await super().send_prompt_list_changed()
        await self.session.send_prompt_list_changed()

    async def send_resource_updated(self, uri: str, title: str) -> None:
        if self.session is None:
            return await super().send_resource_updated(uri, title)
        # The params model allows extra fields; title rides along
        notification = types.ResourceUpdatedNotification(
            method="notifications/resources/updated",
            params=types.ResourceUpdatedNotificationParams(uri=AnyUrl(uri), title=title),
        )
        await self.session.send_notification(types.ServerNotification(notification))

    async def _send_log_message(self, level: str, data: Any, logger: Optional[str]) -> None:
        if self.session is None:
            return await super()._send_log_message(level, data, logger)
        await self.session.send_log_message(level=level, data=data, logger=logger)


def _client_supports(session: Any, **capability: Any) -> bool:
    if session is None:
        return False
    return session.check_client_capability(types.ClientCapabilities(**capability))


def make_sampler(session: Any):
    """Wrap ``session.create_message`` as a tag-suggestion sampler."""

    async def sample(system_prompt: str, user_text: str, max_tokens: int) -> str:
        result = await session.create_message(
            messages=[
                types.SamplingMessage(
                    role="user",
                    content=types.TextContent(type="text", text=user_text),
                )
            ],
            max_tokens=max_tokens,
            system_prompt=system_prompt,
        )
        if result.content.type != "text":
            log.warning("Sampling returned %s content, expected text", result.content.type)
            return ""
        return result.content.text

    return sample


def make_confirm(session: Any):
    """Wrap ``session.elicit`` as a yes/no confirmation."""

    async def confirm(message: str) -> bool:
        result = await session.elicit(message=message, requestedSchema=CONFIRM_SCHEMA)
        return result.action == "accept" and bool((result.content or {}).get("confirmed"))

    return confirm


def make_progress_reporter(session: Any, progress_token: Any):
    async def report(value: float) -> None:
        await session.send_progress_notification(
            progress_token,
            progress=value,
            total=1.0,
            message=f"{round(value * 100)}%",
        )

    return report


def create_server(engine: EpicMeEngine) -> "Server":
    """Create and configure the MCP server.

    Args:
        engine: Initialized engine; its notifier should be a SessionNotifier

    Returns:
        Configured MCP Server instance

    Raises:
        ImportError: If MCP package is not installed
    """
    if not HAS_MCP:
        raise ImportError(INSTALL_HINT)

    server = Server(
        "epicme",
        instructions=(
            "EpicMe is a journaling app that allows users to write about and review "
            "their experiences, thoughts, and reflections. Create tags first, then "
            "create entries, then attach tags to entries."
        ),
    )
    notifier = engine.notifier

    def current_session() -> Any:
        try:
            ctx = server.request_context
        except LookupError:
            return None
        if isinstance(notifier, SessionNotifier):
            notifier.bind(ctx.session)
        return ctx.session

    def progress_token() -> Any:
        try:
            meta = server.request_context.meta
        except LookupError:
            return None
        return meta.progressToken if meta is not None else None

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        """Return list of enabled tools."""
        current_session()
        return [
            types.Tool.model_validate(cap.definition)
            for cap in engine.registry.enabled(CapabilityKind.TOOL)
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
        """Handle tool invocation."""
        session = current_session()
        context = ToolContext()
        if session is not None:
            token = progress_token()
            if token is not None:
                context.report_progress = make_progress_reporter(session, token)
            if _client_supports(session, sampling=types.SamplingCapability()):
                context.sample = make_sampler(session)
            if _client_supports(session, elicitation=types.ElicitationCapability()):
                context.confirm = make_confirm(session)

        result = await execute_tool(engine, name, arguments, context)
        return [types.TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    @server.list_resources()
    async def handle_list_resources() -> list[types.Resource]:
        current_session()
        return [types.Resource.model_validate(r) for r in await list_resources(engine)]

    @server.list_resource_templates()
    async def handle_list_resource_templates() -> list[types.ResourceTemplate]:
        current_session()
        return [types.ResourceTemplate.model_validate(t) for t in list_resource_templates(engine)]

    @server.read_resource()
    async def handle_read_resource(uri: AnyUrl) -> list[ReadResourceContents]:
        current_session()
        content, mime_type = await read_resource(engine, str(uri))
        return [ReadResourceContents(content=content, mime_type=mime_type)]

    @server.subscribe_resource()
    async def handle_subscribe(uri: AnyUrl) -> None:
        current_session()
        engine.subscriptions.subscribe(str(uri))

    @server.unsubscribe_resource()
    async def handle_unsubscribe(uri: AnyUrl) -> None:
        current_session()
        engine.subscriptions.unsubscribe(str(uri))

    @server.list_prompts()
    async def handle_list_prompts() -> list[types.Prompt]:
        current_session()
        return [
            types.Prompt.model_validate(cap.definition)
            for cap in engine.registry.enabled(CapabilityKind.PROMPT)
        ]

    @server.get_prompt()
    async def handle_get_prompt(name: str, arguments: Optional[dict[str, str]]) -> types.GetPromptResult:
        current_session()
        return types.GetPromptResult.model_validate(await get_prompt(engine, name, arguments or {}))

    @server.set_logging_level()
    async def handle_set_logging_level(level: types.LoggingLevel) -> None:
        current_session()
        log.info("Client log level set to %s", level)
        notifier.logging_level = level

    return server


def initialization_options(server: "Server") -> Any:
    """Initialization options advertising list-changed and subscriptions."""
    options = server.create_initialization_options(
        NotificationOptions(prompts_changed=True, resources_changed=True, tools_changed=True)
    )
    if options.capabilities.resources is not None:
        options.capabilities.resources.subscribe = True
    return options


async def run_server(config: ServerConfig) -> None:
    """Run the MCP server with stdio transport."""
    if not HAS_MCP:
        raise ImportError(INSTALL_HINT)

    engine = EpicMeEngine(config, SessionNotifier(config.client_log_level))  # pragma: no cover
    await engine.initialize()  # pragma: no cover
    server = create_server(engine)  # pragma: no cover

    try:  # pragma: no cover
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, initialization_options(server))
    finally:  # pragma: no cover
        await engine.close()


async def init_project(config: ServerConfig) -> EpicMeEngine:
    """Create the database and videos directory, then close them again."""
    engine = EpicMeEngine(config)
    await engine.initialize()
    config.get_videos_path().mkdir(parents=True, exist_ok=True)
    await engine.close()
    return engine


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="EpicMe MCP Server - Journaling with dynamic tools, resources and prompts"
    )
    parser.add_argument(
        "--project-root",
        "-p",
        type=Path,
        default=Path.cwd(),
        help="Project root directory (default: current directory)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to config file (default: auto-detect in project root)",
    )
    parser.add_argument(
        "--db-path",
        help="SQLite database path (overrides config and EPIC_ME_DB_PATH)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Server-side log level written to stderr (default: WARNING)",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Create the database and videos directory, then exit",
    )

    args = parser.parse_args()

    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    project_root = args.project_root.resolve()

    # Load configuration
    try:
        config = load_config(project_root, args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.db_path:
        config.db_path = args.db_path

    if args.init:
        asyncio.run(init_project(config))
        print(f"Initialized EpicMe project in {project_root}")
        print(f"  - {config.get_db_path()}")
        print(f"  - {config.get_videos_path()}/")
        return

    # Check for MCP before starting the server
    if not HAS_MCP:
        print(f"Error: {INSTALL_HINT}", file=sys.stderr)
        print("Note: MCP requires Python 3.10+", file=sys.stderr)
        sys.exit(1)

    # Run server
    asyncio.run(run_server(config))


if __name__ == "__main__":  # pragma: no cover
    main()
