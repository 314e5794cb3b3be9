"""Presence lifecycle manager.

Keeps the durable ``lastSeen`` timestamp in step with live connections:
    - on the offline -> online transition: refresh lastSeen, broadcast online
    - on another device joining: refresh lastSeen only
    - on the online -> offline transition: refresh lastSeen, broadcast offline
    - every ``sweep_interval_seconds``: refresh lastSeen for all online users,
      so a reader in another process never sees a connected user as stale

Two notions are kept apart on purpose:
    online  - this process holds at least one live connection for the user
              (registry state; used by presence broadcasts and online flags)
    active  - ``lastSeen`` lies within ``activity_window_seconds`` of now
              (derived at query time; used by read-side reporting only)

All lastSeen writes are best-effort: failures are logged and swallowed and
never block a connection lifecycle event.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from app.config import PresenceSettings
from app.storage.base import ChatStore
from app.storage.schemas import utcnow

from .broadcast import BroadcastRouter
from .errors import ChatError
from .registry import Connection, ConnectionRegistry, PresenceChange

logger = logging.getLogger(__name__)

ACTIVE = "active"
OFFLINE = "offline"


def activity_status(
    last_seen: datetime, window_seconds: int, now: Optional[datetime] = None
) -> str:
    """Classify a user as "active" or "offline" from their lastSeen."""
    now = now or utcnow()
    return ACTIVE if now - last_seen < timedelta(seconds=window_seconds) else OFFLINE


class PresenceManager:
    """Drives presence transitions and lastSeen freshness."""

    def __init__(
        self,
        store: ChatStore,
        registry: ConnectionRegistry,
        broadcaster: BroadcastRouter,
        settings: Optional[PresenceSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._registry = registry
        self._broadcaster = broadcaster
        self.settings = settings or PresenceSettings()
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        registry.subscribe(self._on_presence_change)

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, user_id: str, connection: Connection) -> bool:
        """Register a connection; returns True if the user just came online."""
        came_online = await self._registry.register(user_id, connection)
        if not came_online:
            # Transitions refresh lastSeen in the observer; extra devices do it here.
            self.touch(user_id)
        return came_online

    async def disconnect(self, connection: Connection) -> bool:
        """Unregister a connection; returns True if the user just went offline.

        Terminal and idempotent: a second call for the same connection is a no-op.
        """
        return await self._registry.unregister(connection)

    async def _on_presence_change(self, change: PresenceChange) -> None:
        self.touch(change.user_id)
        await self._broadcaster.broadcast_presence(
            change.user_id, change.online, change.total_online
        )
        logger.info(
            "[Presence] %s is now %s (%d online)",
            change.user_id, "online" if change.online else "offline", change.total_online,
        )

    def touch(self, user_id: str) -> bool:
        """Best-effort lastSeen refresh."""
        try:
            return self._store.touch_last_seen(user_id, self._clock())
        except ChatError as exc:
            logger.warning("[Presence] Could not update lastSeen for %s: %s", user_id, exc)
            return False

    # =========================================================================
    # Periodic sweep
    # =========================================================================

    async def sweep_once(self) -> int:
        """Refresh lastSeen for every online user in one store call.

        The call runs on the event loop thread, which is also the only
        thread allowed to use the store's DuckDB connection. It is a single
        batched UPDATE whatever the number of online users, so the loop is
        held for one statement per interval and never once per user;
        connection and message handling resume as soon as it returns.
        """
        user_ids = self._registry.online_users()
        if not user_ids:
            return 0
        try:
            updated = self._store.touch_last_seen_many(user_ids, self._clock())
        except ChatError as exc:
            logger.warning("[Presence] Sweep failed for %d users: %s", len(user_ids), exc)
            return 0
        logger.debug("[Presence] Sweep refreshed lastSeen for %d users", updated)
        return updated

    async def _sweep_loop(self) -> None:
        interval = self.settings.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("[Presence] Unexpected sweep failure")

    async def start(self) -> None:
        """Start the background sweeper (no-op if disabled or running)."""
        if not self.settings.sweep_enabled or self._task is not None:
            return
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "[Presence] Sweeper started (every %ss)", self.settings.sweep_interval_seconds
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[Presence] Sweeper stopped")

    @property
    def sweeping(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # Read-side classification
    # =========================================================================

    def activity_status(self, last_seen: datetime, now: Optional[datetime] = None) -> str:
        return activity_status(
            last_seen, self.settings.activity_window_seconds, now or self._clock()
        )

    def active_since(self, now: Optional[datetime] = None) -> datetime:
        """Cut-off timestamp: users seen strictly after it count as active."""
        return (now or self._clock()) - timedelta(seconds=self.settings.activity_window_seconds)
