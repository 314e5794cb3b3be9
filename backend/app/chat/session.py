"""Per-connection event handler.

One ``ChatSession`` exists per live connection. The WebSocket endpoint feeds
it raw frames; ``handle`` parses them into explicit event types, dispatches
to one method per event, and returns the direct reply for the originating
connection (or None). Chat errors propagate to the caller, which turns them
into a ``message_error`` for this connection only.
"""
import logging
from typing import Optional, Union

from . import events
from .errors import NotAuthorizedError, NotFoundError, ValidationError
from .hub import ChatHub
from .registry import Connection

logger = logging.getLogger(__name__)


class ChatSession:
    """Handles the inbound events of a single connection."""

    def __init__(self, hub: ChatHub, connection: Connection) -> None:
        self.hub = hub
        self.connection = connection
        self.user_id: Optional[str] = None
        self.closed = False

    async def handle(self, raw: Union[str, dict]) -> Optional[dict]:
        if self.closed:
            return None
        event = events.parse_event(raw)
        logger.debug("[Session] %s -> %s", self.user_id or "anonymous", event.type)

        if isinstance(event, events.IdentityJoin):
            return await self._on_identity_join(event)
        if isinstance(event, events.GroupJoin):
            return self._on_group_join(event)
        if isinstance(event, events.GroupLeave):
            return self._on_group_leave(event)
        if isinstance(event, events.SendMessage):
            return await self._on_send_message(event)
        if isinstance(event, events.Typing):
            return await self._on_typing(event)
        if isinstance(event, events.MarkRead):
            return await self._on_mark_read(event)
        raise ValidationError(f"Unsupported event: {event.type}")

    async def close(self) -> None:
        """Drop the registration and every group membership. Idempotent."""
        if self.closed:
            return
        self.closed = True
        await self.hub.presence.disconnect(self.connection)

    def _require_identity(self) -> str:
        if self.user_id is None:
            raise NotAuthorizedError("Send identity_join before this event")
        return self.user_id

    # =========================================================================
    # Event handlers
    # =========================================================================

    async def _on_identity_join(self, event: events.IdentityJoin) -> dict:
        if self.user_id is not None and self.user_id != event.userId:
            raise ValidationError("Connection is already bound to another user")

        user = self.hub.store.get_user(event.userId)
        if user is None:
            raise NotFoundError(f"User not found: {event.userId}")
        if not user.isActive:
            raise NotAuthorizedError("Account is deactivated")

        await self.hub.presence.connect(user.id, self.connection)
        self.user_id = user.id
        logger.info("[Session] Connection identified as %s", user.id)
        return {
            "type": "identity_joined",
            "userId": user.id,
            "online": self.hub.registry.online_users(),
        }

    def _on_group_join(self, event: events.GroupJoin) -> dict:
        # Joining a group is a subscription; authorization already happened
        # when the client fetched or created the conversation.
        self.hub.registry.join_group(event.conversationId, self.connection)
        return {"type": "group_joined", "conversationId": event.conversationId}

    def _on_group_leave(self, event: events.GroupLeave) -> dict:
        self.hub.registry.leave_group(event.conversationId, self.connection)
        return {"type": "group_left", "conversationId": event.conversationId}

    async def _on_send_message(self, event: events.SendMessage) -> None:
        user_id = self._require_identity()
        if event.senderId is not None and event.senderId != user_id:
            raise NotAuthorizedError("senderId does not match the connection identity")

        await self.hub.pipeline.ingest(
            event.conversationId,
            user_id,
            event.text,
            kind=event.kind,
            attachment_url=event.attachmentUrl,
        )
        # The sender sees the message through its group like everybody else.
        return None

    async def _on_typing(self, event: events.Typing) -> None:
        user_id = self._require_identity()
        await self.hub.broadcaster.broadcast_typing(
            event.conversationId, user_id, event.starting, exclude=self.connection
        )
        return None

    async def _on_mark_read(self, event: events.MarkRead) -> None:
        user_id = self._require_identity()
        await self.hub.pipeline.mark_read(event.messageId, user_id)
        return None
