"""
Test configuration and fixtures for MentorConnect relay tests.

Provides:
- A recording in-memory transport
- Registry / storage / lifecycle / relay fixtures wired together
- JWT token generation with a test secret
"""

from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from MentorConnect.core.message.protocol import EventType
from MentorConnect.core.server.auth import JWTAuthenticator
from MentorConnect.core.server.presence import PresenceRegistry
from MentorConnect.core.server.routing import MessageRelay
from MentorConnect.core.server.session import ConnectionLifecycleManager
from MentorConnect.core.server.storage_sqlite import SQLitePersistence, SQLiteStore
from MentorConnect.test.helpers import TEST_SECRET, make_token


class FakeTransport:
    """Transport that records every push instead of writing to sockets."""

    def __init__(self):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []
        self.broadcasts: List[Tuple[str, Dict[str, Any]]] = []
        self.dead: set = set()

    async def send(self, connection_id: str, event: Any, payload: Dict[str, Any]) -> bool:
        event = event.value if isinstance(event, EventType) else event
        if connection_id in self.dead:
            return False
        self.sent.append((connection_id, event, payload))
        return True

    async def broadcast_all(self, event: Any, payload: Dict[str, Any]) -> int:
        event = event.value if isinstance(event, EventType) else event
        self.broadcasts.append((event, payload))
        return 1

    def frames_for(self, connection_id: str, event: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            payload for cid, name, payload in self.sent
            if cid == connection_id and (event is None or name == event)
        ]

    def presence_snapshots(self) -> List[List[str]]:
        return [payload["online_user_ids"] for _, payload in self.broadcasts]


class TestDataGenerator:
    """Generate test data for relay tests."""

    @staticmethod
    def generate_jwt_token(user_id: str, **kwargs) -> str:
        return make_token(user_id, **kwargs)


@pytest.fixture(scope="session")
def test_data_generator() -> TestDataGenerator:
    """Provide test data generator."""
    return TestDataGenerator()


@pytest.fixture
def registry() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def store():
    """In-memory SQLite store, closed after the test."""
    sqlite_store = SQLiteStore(":memory:")
    yield sqlite_store
    sqlite_store.close()


@pytest.fixture
def persistence(store) -> SQLitePersistence:
    return SQLitePersistence(store)


@pytest_asyncio.fixture
async def lifecycle(registry, transport, persistence):
    """Lifecycle manager whose pending status writes are drained on teardown."""
    manager = ConnectionLifecycleManager(registry, transport, persistence)
    yield manager
    await manager.drain()


@pytest.fixture
def relay(registry, persistence, transport) -> MessageRelay:
    return MessageRelay(registry, persistence, transport)


@pytest.fixture
def authenticator() -> JWTAuthenticator:
    return JWTAuthenticator(secret=TEST_SECRET)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
