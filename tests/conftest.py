"""Shared fixtures: the scripted Ollama API, the fake CLI and an app client."""

import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.adapters.ollama import OllamaAdapter
from app.main import app
from app.services.download_registry import DownloadRegistry
from tests.fake_api import FakeOllamaAPI

FAKE_OLLAMA = Path(__file__).with_name("fake_ollama.py")
OLLAMA_URL = "http://ollama.test"


@pytest.fixture
def fake_api() -> FakeOllamaAPI:
    return FakeOllamaAPI()


@pytest.fixture
def fake_cli() -> list[str]:
    return [sys.executable, str(FAKE_OLLAMA)]


@pytest_asyncio.fixture
async def adapter(fake_api, fake_cli):
    http = AsyncClient(transport=httpx.MockTransport(fake_api.handler), base_url=OLLAMA_URL)
    adapter = OllamaAdapter(http, cli=fake_cli, cli_timeout=30)
    yield adapter
    await adapter.aclose()


@pytest.fixture
def registry() -> DownloadRegistry:
    return DownloadRegistry()


@pytest_asyncio.fixture
async def client(adapter, registry):
    app.state.ollama = adapter
    app.state.downloads = registry
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
