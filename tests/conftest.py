"""
Pytest configuration and fixtures.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.api import deps
from app.api.main import app
from app.services.store import InMemoryAgentStore
from app.voice.telephony import MockTelephonyProvider
from tests.fakes import ORIGIN, FakeRemoteCaller, FakeTelegramClient


@pytest.fixture
def store() -> InMemoryAgentStore:
    return InMemoryAgentStore()


@pytest.fixture
def remote() -> FakeRemoteCaller:
    """Remote caller where every domain agent succeeds."""
    caller = FakeRemoteCaller()
    caller.reply("GET", "/api/business-agent/projects", body={"data": {"projects": []}})
    caller.reply("POST", "/api/chat", body={"data": {"reply": "ok"}})
    caller.reply("POST", "/api/voice-lab/jobs", body={"data": {"job_id": "voice-1"}})
    caller.reply("POST", "/api/avatar/generate", body={"data": {"image_url": "https://cdn.test/a.png"}})
    caller.reply("POST", "/api/marketplace/listings", body={"data": {"listing_id": "l-1"}})
    return caller


@pytest.fixture
def telephony() -> MockTelephonyProvider:
    return MockTelephonyProvider()


@pytest.fixture
def telegram() -> FakeTelegramClient:
    return FakeTelegramClient()


@pytest.fixture
def mock_user_id() -> str:
    """Return mock user ID for testing."""
    return "dev-user-001"


@pytest_asyncio.fixture
async def client(
    store: InMemoryAgentStore,
    remote: FakeRemoteCaller,
    telephony: MockTelephonyProvider,
    telegram: FakeTelegramClient,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with in-memory collaborators."""
    monkeypatch.setattr(deps.settings, "public_app_url", ORIGIN)

    app.dependency_overrides[deps.get_agent_store] = lambda: store
    app.dependency_overrides[deps.get_remote_caller] = lambda: remote
    app.dependency_overrides[deps.get_telephony] = lambda: telephony
    app.dependency_overrides[deps.get_synthesizer] = lambda: None
    app.dependency_overrides[deps.get_telegram_client] = lambda: telegram
    app.dependency_overrides[deps.get_transcriber] = lambda: None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def sample_execute_request() -> dict:
    """Return sample execute request."""
    return {
        "goal": "Launch my bakery business with instagram posts",
        "advanced_mode": False,
    }
