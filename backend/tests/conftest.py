"""Shared test fixtures and configuration for backend tests."""
from typing import List

import pytest
from fastapi.testclient import TestClient

from relay.chat.schemas import AnyRecord, Reactions
from relay.config import AccessMode, AppConfig
from relay.main import create_app
from relay.store import HistoryStore, StoreError

SECRET = "Linux"


def make_config(tmp_path, **chat) -> AppConfig:
    """Build an AppConfig that keeps uploads under *tmp_path*."""
    config = AppConfig()
    config.secrets.chat.secret = SECRET
    config.uploads.upload_dir = str(tmp_path / "uploads")
    for key, value in chat.items():
        setattr(config.chat, key, value)
    return config


class FailingStore(HistoryStore):
    """Store whose every operation fails, like a MongoDB that went away."""

    name = "failing"

    def __init__(self) -> None:
        self.calls: List[str] = []

    async def append(self, record: AnyRecord) -> None:
        self.calls.append("append")
        raise StoreError("connection refused")

    async def list_recent(self, limit: int) -> List[AnyRecord]:
        self.calls.append("list_recent")
        raise StoreError("connection refused")

    async def count(self) -> int:
        raise StoreError("connection refused")

    async def delete_oldest(self, n: int) -> None:
        raise StoreError("connection refused")

    async def update_reactions(self, message_id: str, reactions: Reactions) -> None:
        self.calls.append("update_reactions")
        raise StoreError("connection refused")


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def app_factory(tmp_path):
    """Return a builder for relay apps: ``app_factory(store=None, **chat_settings)``."""
    def _build(store: HistoryStore = None, **chat):
        return create_app(make_config(tmp_path, **chat), store=store)
    return _build


@pytest.fixture
def relay_config(tmp_path) -> AppConfig:
    """Shared-secret configuration with the default capacity."""
    return make_config(tmp_path)


@pytest.fixture
def api_client(relay_config):
    """Provide a TestClient for a fresh relay app.

    Used as a context manager so every WebSocket opened by a test runs on
    the same event loop as the app's lock and scheduled closes.
    """
    with TestClient(create_app(relay_config)) as client:
        yield client


@pytest.fixture
def open_client(tmp_path):
    with TestClient(create_app(make_config(tmp_path, access_mode=AccessMode.OPEN))) as client:
        yield client


@pytest.fixture
def join_client(tmp_path):
    with TestClient(create_app(make_config(tmp_path, access_mode=AccessMode.NAMED_JOIN))) as client:
        yield client
