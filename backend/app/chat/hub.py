"""Process-wide wiring of the chat core.

A ``ChatHub`` owns one store, one connection registry and the services built
on top of them. Routers fetch it with ``get_hub()``; tests install their own
with ``set_hub()``.
"""
import logging
from typing import Optional

from app.config import AppConfig, get_config
from app.storage.base import ChatStore
from app.storage.duckdb_store import DuckDBChatStore

from .broadcast import BroadcastRouter
from .membership import MembershipResolver
from .pipeline import MessagePipeline
from .presence import PresenceManager
from .registry import ConnectionRegistry, LocalConnectionRegistry

logger = logging.getLogger(__name__)


class ChatHub:
    """Container for the chat core services sharing one store and registry."""

    def __init__(
        self,
        store: ChatStore,
        config: Optional[AppConfig] = None,
        registry: Optional[ConnectionRegistry] = None,
    ) -> None:
        config = config or AppConfig()
        self.store = store
        self.registry = registry or LocalConnectionRegistry()
        self.broadcaster = BroadcastRouter(self.registry)
        self.membership = MembershipResolver(store)
        self.presence = PresenceManager(store, self.registry, self.broadcaster, config.presence)
        self.pipeline = MessagePipeline(
            store, self.membership, self.broadcaster, self.presence, config.chat
        )

    async def start(self) -> None:
        await self.presence.start()

    async def stop(self) -> None:
        await self.presence.stop()


_hub: Optional[ChatHub] = None


def get_hub() -> ChatHub:
    """Return the process-wide hub, building it from config on first use."""
    global _hub
    if _hub is None:
        config = get_config()
        _hub = ChatHub(DuckDBChatStore.get_instance(config.storage.db_path), config)
        logger.info("[Hub] Chat hub created (db=%s)", config.storage.db_path)
    return _hub


def set_hub(hub: Optional[ChatHub]) -> None:
    global _hub
    _hub = hub
