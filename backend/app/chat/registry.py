"""Identity & connection registry for live chat connections.

Maps a user identity to the set of open connections for that user (one per
device or tab) and each connection to the conversation groups it has joined.
It is the source of truth for "is this user online" within this process.

Concurrency:
    Registration changes are serialized per user with a keyed asyncio.Lock
    that is held across the state change *and* the observer notification,
    so a burst of connects and disconnects for one user can neither corrupt
    the connection set nor double-fire or reorder presence transitions.
    Group membership changes contain no await points and are therefore
    atomic on the event loop without a lock.

    Like the rest of the chat core this is designed for a single event loop.
    It is NOT thread-safe.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, Hashable, List, Optional, Protocol, Set

from .errors import ValidationError

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything the broadcast router can push JSON to (a WebSocket in production)."""

    async def send_json(self, data: dict) -> None:
        ...


@dataclass(frozen=True)
class PresenceChange:
    """An online/offline transition for one user."""
    user_id: str
    online: bool
    total_online: int


PresenceObserver = Callable[[PresenceChange], Awaitable[None]]


class KeyedLock:
    """One asyncio.Lock per key, dropped again once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class ConnectionRegistry(ABC):
    """Interface for connection registries.

    The in-process implementation is ``LocalConnectionRegistry``; tests and
    alternative deployments can substitute their own.
    """

    @abstractmethod
    async def register(self, user_id: str, connection: Connection) -> bool:
        """Associate a connection with a user.

        Returns:
            True if this was the user's first connection (offline -> online).
        """

    @abstractmethod
    async def unregister(self, connection: Connection) -> bool:
        """Forget a connection and all of its group memberships.

        Returns:
            True if this was the user's last connection (online -> offline).
        """

    @abstractmethod
    def is_online(self, user_id: str) -> bool:
        ...

    @abstractmethod
    def connections_for(self, user_id: str) -> Set[Connection]:
        ...

    @abstractmethod
    def user_for(self, connection: Connection) -> Optional[str]:
        ...

    @abstractmethod
    def online_users(self) -> List[str]:
        ...

    @abstractmethod
    def online_count(self) -> int:
        ...

    @abstractmethod
    def all_connections(self) -> Set[Connection]:
        ...

    @abstractmethod
    def join_group(self, conversation_id: str, connection: Connection) -> bool:
        ...

    @abstractmethod
    def leave_group(self, conversation_id: str, connection: Connection) -> bool:
        ...

    @abstractmethod
    def group_members(self, conversation_id: str) -> Set[Connection]:
        ...

    @abstractmethod
    def groups_for(self, connection: Connection) -> Set[str]:
        ...

    @abstractmethod
    def subscribe(self, observer: PresenceObserver) -> None:
        """Register a coroutine called on every presence transition."""


class LocalConnectionRegistry(ConnectionRegistry):
    """In-memory registry for a single process."""

    def __init__(self) -> None:
        # user_id -> live connections for that user
        self._user_connections: Dict[str, Set[Connection]] = {}

        # connection -> user_id (set once at identity join)
        self._connection_user: Dict[Connection, str] = {}

        # conversation_id -> connections subscribed to its broadcasts
        self._groups: Dict[str, Set[Connection]] = {}

        # connection -> conversation ids, so close can drop every membership
        self._connection_groups: Dict[Connection, Set[str]] = {}

        self._observers: List[PresenceObserver] = []
        self._locks = KeyedLock()

    # =========================================================================
    # Identity
    # =========================================================================

    async def register(self, user_id: str, connection: Connection) -> bool:
        async with self._locks.hold(user_id):
            current = self._connection_user.get(connection)
            if current == user_id:
                return False
            if current is not None:
                raise ValidationError(
                    f"Connection is already registered to another user ({current})"
                )

            connections = self._user_connections.setdefault(user_id, set())
            first = not connections
            connections.add(connection)
            self._connection_user[connection] = user_id
            logger.info(
                "[Registry] User %s registered connection (%d open)", user_id, len(connections)
            )

            if first:
                await self._notify(PresenceChange(user_id, True, len(self._user_connections)))
            return first

    async def unregister(self, connection: Connection) -> bool:
        self._drop_groups(connection)

        user_id = self._connection_user.get(connection)
        if user_id is None:
            return False

        async with self._locks.hold(user_id):
            # A concurrent unregister may have won the race while we waited.
            if self._connection_user.get(connection) != user_id:
                return False
            del self._connection_user[connection]

            connections = self._user_connections.get(user_id, set())
            connections.discard(connection)
            if connections:
                logger.info(
                    "[Registry] User %s closed a connection (%d still open)",
                    user_id, len(connections),
                )
                return False

            self._user_connections.pop(user_id, None)
            logger.info("[Registry] User %s has no open connections", user_id)
            await self._notify(PresenceChange(user_id, False, len(self._user_connections)))
            return True

    def is_online(self, user_id: str) -> bool:
        return user_id in self._user_connections

    def connections_for(self, user_id: str) -> Set[Connection]:
        return set(self._user_connections.get(user_id, ()))

    def user_for(self, connection: Connection) -> Optional[str]:
        return self._connection_user.get(connection)

    def online_users(self) -> List[str]:
        return list(self._user_connections)

    def online_count(self) -> int:
        return len(self._user_connections)

    def all_connections(self) -> Set[Connection]:
        return set(self._connection_user)

    # =========================================================================
    # Conversation groups
    # =========================================================================

    def join_group(self, conversation_id: str, connection: Connection) -> bool:
        members = self._groups.setdefault(conversation_id, set())
        if connection in members:
            return False
        members.add(connection)
        self._connection_groups.setdefault(connection, set()).add(conversation_id)
        return True

    def leave_group(self, conversation_id: str, connection: Connection) -> bool:
        members = self._groups.get(conversation_id)
        if not members or connection not in members:
            return False
        members.discard(connection)
        if not members:
            del self._groups[conversation_id]
        groups = self._connection_groups.get(connection)
        if groups is not None:
            groups.discard(conversation_id)
            if not groups:
                del self._connection_groups[connection]
        return True

    def group_members(self, conversation_id: str) -> Set[Connection]:
        return set(self._groups.get(conversation_id, ()))

    def groups_for(self, connection: Connection) -> Set[str]:
        return set(self._connection_groups.get(connection, ()))

    def _drop_groups(self, connection: Connection) -> None:
        for conversation_id in self._connection_groups.pop(connection, set()):
            members = self._groups.get(conversation_id)
            if members is None:
                continue
            members.discard(connection)
            if not members:
                del self._groups[conversation_id]

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, observer: PresenceObserver) -> None:
        self._observers.append(observer)

    async def _notify(self, change: PresenceChange) -> None:
        for observer in self._observers:
            try:
                await observer(change)
            except Exception:
                logger.exception(
                    "[Registry] Presence observer failed for user %s", change.user_id
                )
