"""Shared pytest fixtures for epicme-mcp tests."""

import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from epicme_mcp.config import ServerConfig
from epicme_mcp.engine import EpicMeEngine
from epicme_mcp.notifications import Notifier
from epicme_mcp.storage import Database


class RecordingNotifier(Notifier):
    """Notifier that records every notification it is asked to send."""

    def __init__(self, logging_level: str = "debug"):
        super().__init__(logging_level)
        self.sent = []

    async def send_tool_list_changed(self):
        self.sent.append(("tools/list_changed",))

    async def send_resource_list_changed(self):
        self.sent.append(("resources/list_changed",))

    async def send_prompt_list_changed(self):
        self.sent.append(("prompts/list_changed",))

    async def send_resource_updated(self, uri, title):
        self.sent.append(("resources/updated", uri, title))

    async def _send_log_message(self, level, data, logger):
        self.sent.append(("log", level, data, logger))

    def of_kind(self, kind):
        return [n for n in self.sent if n[0] == kind]

    def list_changed(self):
        return [n[0] for n in self.sent if n[0].endswith("list_changed")]

    def updated_uris(self):
        return [n[1] for n in self.sent if n[0] == "resources/updated"]

    def clear(self):
        self.sent.clear()


class FailingToolsNotifier(RecordingNotifier):
    """Fails the first tool list-changed send."""

    def __init__(self):
        super().__init__()
        self.failures = 1

    async def send_tool_list_changed(self):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("client went away")
        await super().send_tool_list_changed()


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_project):
    """Create a test configuration."""
    return ServerConfig(project_root=temp_project)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def db(temp_project):
    """Standalone database with cleanup."""
    database = Database(temp_project / "db.sqlite")
    yield database
    database.close()


@pytest_asyncio.fixture
async def engine(config, notifier):
    """Initialized engine with a recording notifier."""
    eng = EpicMeEngine(config, notifier)
    await eng.initialize()
    yield eng
    await eng.close()
