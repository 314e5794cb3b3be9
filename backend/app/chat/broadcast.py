"""Broadcast router: fan-out of live events to connections.

Delivery is best-effort and fire-and-forget per connection:
    - every target is sent to concurrently with asyncio.gather()
    - a failed send is a DeliveryError that is logged and ignored; it never
      reaches the sender and never fails the operation that triggered it
    - there is no retry and no queueing; a participant without a live
      connection in the group reads the message from history later

Messages, typing indicators, read receipts and deletions are scoped to a
conversation group (the connections that joined it). Presence updates are
global: every registered connection receives them.
"""
import asyncio
import logging
from typing import Iterable, Optional

from app.storage.schemas import Message

from . import events
from .errors import DeliveryError
from .registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)


class BroadcastRouter:
    """Sends outbound events to the connections held in a registry."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def deliver_message(self, message: Message) -> int:
        """Send a persisted message to its conversation group.

        The group is snapshotted at call time: connections that join later
        do not receive this message retroactively.

        Returns:
            Number of connections the message was handed to.
        """
        targets = self._registry.group_members(message.conversationId)
        delivered = await self._send_all(targets, events.message_received(message))
        logger.info(
            "[Broadcast] Message %s delivered to %d/%d connections in %s",
            message.id, delivered, len(targets), message.conversationId,
        )
        return delivered

    async def broadcast_typing(
        self,
        conversation_id: str,
        user_id: str,
        starting: bool,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Send a typing/stop-typing signal to the group, minus the originator."""
        targets = [
            conn for conn in self._registry.group_members(conversation_id)
            if conn is not exclude
        ]
        return await self._send_all(
            targets, events.typing_indicator(user_id, conversation_id, starting)
        )

    async def broadcast_presence(self, user_id: str, online: bool, total_online: int) -> int:
        """Send a presence update to every registered connection."""
        targets = self._registry.all_connections()
        return await self._send_all(
            targets, events.presence_update(user_id, online, total_online)
        )

    async def broadcast_read_receipt(self, message: Message) -> int:
        targets = self._registry.group_members(message.conversationId)
        return await self._send_all(targets, events.read_receipt(message))

    async def broadcast_deleted(self, message: Message) -> int:
        targets = self._registry.group_members(message.conversationId)
        return await self._send_all(targets, events.message_deleted(message))

    async def _send_all(self, connections: Iterable[Connection], payload: dict) -> int:
        connections = list(connections)
        if not connections:
            return 0
        results = await asyncio.gather(
            *[self._safe_send(conn, payload) for conn in connections],
            return_exceptions=True,
        )
        return sum(1 for ok in results if ok is True)

    async def _safe_send(self, connection: Connection, payload: dict) -> bool:
        try:
            await self._send(connection, payload)
            return True
        except DeliveryError as e:
            logger.debug("[Broadcast] Dropped %s: %s", payload.get("type"), e)
            return False

    async def _send(self, connection: Connection, payload: dict) -> None:
        try:
            await connection.send_json(payload)
        except Exception as e:
            raise DeliveryError(f"Failed to send to connection: {e}") from e
