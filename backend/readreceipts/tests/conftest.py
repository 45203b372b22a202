"""
Pytest fixtures shared across all test modules.
Uses an in-memory SQLite database with StaticPool so all connections
share a single in-memory DB; no real Postgres/MySQL required for tests.
Mattermost lookups and Redis are replaced with in-process fakes.
"""

import os

# Set env vars BEFORE any readreceipts module is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["REDIS_URL"] = ""
os.environ["MATTERMOST_URL"] = "http://mattermost.test"
os.environ["CONFIG_PUSH_TOKEN"] = "test-push-token"

import pytest
from fastapi.testclient import TestClient

from readreceipts.config import settings  # noqa: E402
from readreceipts.database import create_db_engine  # noqa: E402
from readreceipts.main import create_app  # noqa: E402
from readreceipts.mattermost import Channel, LookupFailed, Post  # noqa: E402
from readreceipts.plugin import Plugin  # noqa: E402
from readreceipts.services.receipt_service import ReceiptService  # noqa: E402
from readreceipts.store import SQLiteStore  # noqa: E402
from readreceipts.websocket.broadcaster import Broadcaster  # noqa: E402
from readreceipts.websocket.manager import ConnectionManager  # noqa: E402

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeLookup:
    """In-memory stand-in for the Mattermost REST API."""

    def __init__(self) -> None:
        self.posts: dict[str, Post] = {}
        self.channels: dict[str, Channel] = {}

    def add_channel(self, channel_id: str, type: str = "O", name: str = "") -> Channel:
        channel = Channel(id=channel_id, type=type, name=name or channel_id)
        self.channels[channel_id] = channel
        return channel

    def add_post(self, post_id: str, channel_id: str, user_id: str = "author", create_at: int = 0) -> Post:
        if channel_id not in self.channels:
            self.add_channel(channel_id)
        post = Post(id=post_id, channel_id=channel_id, user_id=user_id, create_at=create_at)
        self.posts[post_id] = post
        return post

    def get_post(self, post_id: str) -> Post:
        try:
            return self.posts[post_id]
        except KeyError:
            raise LookupFailed(f"post {post_id} not found") from None

    def get_channel(self, channel_id: str) -> Channel:
        try:
            return self.channels[channel_id]
        except KeyError:
            raise LookupFailed(f"channel {channel_id} not found") from None


class RecordingBroadcaster(Broadcaster):
    """Broadcaster that remembers every published event (Redis disabled)."""

    def __init__(self, manager: ConnectionManager) -> None:
        super().__init__(manager, redis_getter=lambda: None)
        self.published: list[tuple[str, dict, object]] = []

    async def publish(self, event, data, scope=None) -> None:
        self.published.append((event, data, scope))
        await super().publish(event, data, scope)

    def events(self, name: str) -> list[tuple[dict, object]]:
        return [(data, scope) for event, data, scope in self.published if event == name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_db_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture()
def store(engine):
    s = SQLiteStore(engine)
    s.initialize()
    s.initialize_channel_reads()
    return s


@pytest.fixture()
def lookup():
    return FakeLookup()


@pytest.fixture()
def broadcaster():
    return RecordingBroadcaster(ConnectionManager())


@pytest.fixture()
def service(store, lookup, broadcaster):
    return ReceiptService(store, lookup, broadcaster)


@pytest.fixture()
def plugin(engine, lookup):
    p = Plugin(settings, lookup=lookup, engine=engine)
    p.broadcaster = RecordingBroadcaster(p.manager)
    return p


@pytest.fixture()
def client(plugin):
    with TestClient(create_app(plugin)) as c:
        yield c


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_headers(user_id: str) -> dict:
    return {"Mattermost-User-Id": user_id}
