"""Tests for process-wide hub wiring."""
import pytest

from app.chat import hub as hub_module
from app.chat.hub import ChatHub, get_hub, set_hub
from app.config import reset_config
from app.storage.duckdb_store import DuckDBChatStore


@pytest.fixture
def fresh_hub(tmp_path, monkeypatch):
    """No hub installed; config points at an in-memory store."""
    settings = tmp_path / "chat.settings.yaml"
    settings.write_text(
        "storage:\n  db_path: ':memory:'\npresence:\n  sweep_interval_seconds: 5\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("CHAT_SETTINGS_PATH", str(settings))
    reset_config()
    DuckDBChatStore.reset_instance()
    set_hub(None)
    yield
    set_hub(None)
    DuckDBChatStore.reset_instance()
    reset_config()


def test_get_hub_builds_from_config(fresh_hub):
    hub = get_hub()
    assert isinstance(hub, ChatHub)
    assert hub.store is DuckDBChatStore.get_instance()
    assert hub.presence.settings.sweep_interval_seconds == 5
    assert get_hub() is hub


def test_set_hub_replaces_the_instance(fresh_hub, store):
    custom = ChatHub(store)
    set_hub(custom)
    assert get_hub() is custom
    assert hub_module._hub is custom


@pytest.mark.asyncio
async def test_start_and_stop_control_the_sweeper(store):
    hub = ChatHub(store)
    await hub.start()
    assert hub.presence.sweeping
    await hub.stop()
    assert not hub.presence.sweeping
