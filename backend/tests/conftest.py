"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from app.chat.hub import ChatHub, set_hub
from app.config import AppConfig, PresenceSettings, StorageSettings
from app.main import app
from app.storage.duckdb_store import DuckDBChatStore
from app.storage.schemas import User, UserRole


class FakeConnection:
    """Stand-in for a WebSocket: records every payload pushed to it.

    Set ``fail = True`` to simulate a connection that went away.
    """

    def __init__(self, name: str = "conn"):
        self.name = name
        self.sent = []
        self.fail = False

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError(f"{self.name} is closed")
        self.sent.append(data)

    def of_type(self, event_type: str) -> list:
        return [payload for payload in self.sent if payload.get("type") == event_type]

    def __repr__(self) -> str:
        return f"FakeConnection({self.name})"


@pytest.fixture
def test_config():
    """App config with an in-memory store and the background sweeper off."""
    return AppConfig(
        storage=StorageSettings(db_path=":memory:"),
        presence=PresenceSettings(sweep_enabled=False),
    )


@pytest.fixture
def store():
    """Fresh in-memory DuckDB store per test."""
    store = DuckDBChatStore(db_path=":memory:")
    yield store
    store.close()


@pytest.fixture
def hub(store, test_config):
    """Chat hub installed as the process-wide hub for the duration of a test."""
    hub = ChatHub(store, test_config)
    set_hub(hub)
    yield hub
    set_hub(None)


@pytest.fixture
def make_user(store):
    """Factory creating users in the test store."""
    counter = {"n": 0}

    def _make(name: str = None, role: UserRole = UserRole.CUSTOMER, **fields) -> User:
        counter["n"] += 1
        name = name or f"user{counter['n']}"
        email = fields.pop("email", f"{name.lower()}-{counter['n']}@example.com")
        return store.create_user(User(name=name, email=email, role=role, **fields))

    return _make


@pytest.fixture
def api_client(hub):
    """Provide a TestClient for the main FastAPI app, bound to the test hub.

    Used as a context manager so lifespan runs and every request and
    WebSocket session shares one event loop.
    """
    with TestClient(app) as client:
        yield client


def headers_for(user: User) -> dict:
    """Identity headers the upstream auth layer would forward for ``user``."""
    return {"X-User-Id": user.id, "X-User-Role": user.role.value}
