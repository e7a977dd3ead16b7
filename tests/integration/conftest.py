"""
Pytest configuration for integration tests.

Runs the inbox webhook app against an in-memory SQLite database, with
provider HTTP calls answered by an httpx mock transport.
"""

import os

# Set environment variables before the app reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "false")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from basecore.db import get_db
from basecore.settings import get_settings
from inbox_webhook.main import app, get_credential_vault, get_provider_transport
from messaging_inbox.contracts.event_types import ChannelType
from messaging_inbox.live.broadcaster import LiveUpdateBroadcaster
from messaging_inbox.persistence.models import InboxBase
from messaging_inbox.persistence.repo import InboxRepository
from messaging_inbox.security.vault import CredentialVault

TEST_KEY = "b2" * 32
VERIFY_TOKEN = "verify-me"


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    """Known settings for every test; individual tests may override."""
    monkeypatch.setenv("META_VERIFY_TOKEN", VERIFY_TOKEN)
    monkeypatch.setenv("META_APP_SECRET", "")
    monkeypatch.setenv("EVOLUTION_WEBHOOK_API_KEY", "")
    monkeypatch.setenv("LIVE_UPDATES_BACKEND", "memory")
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    InboxBase.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    """Session for test setup and assertions."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def vault():
    return CredentialVault(TEST_KEY)


class ProviderStub:
    """Answers provider HTTP calls with a queue of canned responses."""

    def __init__(self):
        self.requests = []
        self.responses = []

    def respond(self, status_code=200, json=None, text=None):
        self.responses.append(httpx.Response(status_code, json=json, text=text))

    def handler(self, request):
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(500, json={"error": "unexpected request"})
        return self.responses.pop(0)


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def broadcaster():
    """Fresh live update registry installed on the app."""
    broadcaster = LiveUpdateBroadcaster()
    app.state.broadcaster = broadcaster
    app.state.publisher = broadcaster
    return broadcaster


@pytest.fixture
def client(session_factory, vault, provider, broadcaster):
    """
    Test client with database, vault and provider transport overridden.

    Not used as a context manager so start-up hooks do not run.
    """

    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_credential_vault] = lambda: vault
    app.dependency_overrides[get_provider_transport] = lambda: httpx.MockTransport(provider.handler)

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def workspace(db):
    workspace = InboxRepository(db).create_workspace("Acme")
    db.commit()
    return workspace


@pytest.fixture
def evolution_account(db, workspace, vault):
    account = InboxRepository(db).create_channel_account(
        workspace_id=workspace.id,
        channel_type=ChannelType.WHATSAPP_EVOLUTION.value,
        external_id="inst1",
        display_name="Sales WhatsApp",
        encrypted_credential=vault.encrypt("evo-api-key"),
        config={"base_url": "https://evo.example.com"},
    )
    db.commit()
    return account


@pytest.fixture
def instagram_account(db, workspace, vault):
    account = InboxRepository(db).create_channel_account(
        workspace_id=workspace.id,
        channel_type=ChannelType.INSTAGRAM_BUSINESS.value,
        external_id="ig-100",
        display_name="Acme Instagram",
        encrypted_credential=vault.encrypt("page-token"),
        config={"page_id": "page-100"},
    )
    db.commit()
    return account

