"""
Pytest fixtures for inbox tests.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from messaging_inbox.contracts.event_types import ChannelType
from messaging_inbox.live.broadcaster import LiveUpdateBroadcaster
from messaging_inbox.persistence.models import InboxBase
from messaging_inbox.persistence.repo import InboxRepository
from messaging_inbox.security.vault import CredentialVault

TEST_KEY = "a1" * 32


@pytest.fixture
def engine():
    """In-memory SQLite engine with the inbox schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    InboxBase.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Database session."""
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def repo(db):
    return InboxRepository(db)


@pytest.fixture
def vault():
    """Vault with a fixed raw key."""
    return CredentialVault(TEST_KEY)


@pytest.fixture
def workspace(db, repo):
    workspace = repo.create_workspace("Acme")
    db.commit()
    return workspace


@pytest.fixture
def evolution_account(db, repo, workspace, vault):
    """WhatsApp channel backed by Evolution instance "inst1"."""
    account = repo.create_channel_account(
        workspace_id=workspace.id,
        channel_type=ChannelType.WHATSAPP_EVOLUTION.value,
        external_id="inst1",
        display_name="Sales WhatsApp",
        encrypted_credential=vault.encrypt("evo-api-key"),
        config={"base_url": "https://evo.example.com", "instance_name": "inst1"},
    )
    db.commit()
    return account


@pytest.fixture
def instagram_account(db, repo, workspace, vault):
    """Instagram Business channel with account id "ig-100"."""
    account = repo.create_channel_account(
        workspace_id=workspace.id,
        channel_type=ChannelType.INSTAGRAM_BUSINESS.value,
        external_id="ig-100",
        display_name="Acme Instagram",
        encrypted_credential=vault.encrypt("page-token"),
        config={"page_id": "page-100"},
    )
    db.commit()
    return account


class RecordingPublisher:
    """Collects published live updates."""

    def __init__(self):
        self.events = []

    def publish(self, workspace_id, event_name, payload):
        self.events.append((str(workspace_id), event_name, payload))
        return 1

    @property
    def types(self):
        return [payload["type"] for _, _, payload in self.events]


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def broadcaster():
    return LiveUpdateBroadcaster()


@pytest.fixture
def evolution_text_webhook():
    """Evolution webhook for an inbound text message."""
    return {
        "event": "messages.upsert",
        "instance": "inst1",
        "data": {
            "key": {
                "id": "3EB0C0FFEE",
                "remoteJid": "5511999@s.whatsapp.net",
                "fromMe": False,
            },
            "pushName": "Maria",
            "message": {"conversation": "Hi"},
            "messageType": "conversation",
            "messageTimestamp": 1700000000,
        },
    }
