"""Message ingestion pipeline.

This is the single write path for messages. ``ingest`` runs, in order:

    1. authorize the sender's membership (NotAuthorizedError otherwise)
    2. validate the body for the message kind (ValidationError)
    3. load the sender summary, then persist with readBy = {sender} and
       isDeleted = False (PersistenceError; nothing is stored or sent)
    4. point the conversation's last-message reference at the new message
    5. hand the message to the broadcast router (best-effort, never raises)
    6. refresh the sender's lastSeen (best-effort, never raises)

Persistence must finish before broadcast starts; a broadcast failure never
rolls back persistence. The read side (history, read receipts, soft
deletion) lives here too so that every message access goes through the
same membership check.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from app.config import ChatSettings
from app.storage.base import ChatStore
from app.storage.schemas import Message, MessageKind, UserSummary

from .broadcast import BroadcastRouter
from .errors import NotAuthorizedError, NotFoundError, ValidationError
from .membership import MembershipResolver
from .presence import PresenceManager

logger = logging.getLogger(__name__)


class MessagePipeline:
    """Validates, persists and distributes messages."""

    def __init__(
        self,
        store: ChatStore,
        membership: MembershipResolver,
        broadcaster: BroadcastRouter,
        presence: PresenceManager,
        settings: Optional[ChatSettings] = None,
    ) -> None:
        self._store = store
        self._membership = membership
        self._broadcaster = broadcaster
        self._presence = presence
        self.settings = settings or ChatSettings()

    async def ingest(
        self,
        conversation_id: str,
        sender_id: str,
        body: str,
        kind: MessageKind = MessageKind.TEXT,
        attachment_url: Optional[str] = None,
    ) -> Message:
        """Persist a message and broadcast it to the conversation group.

        Args:
            conversation_id: Target conversation.
            sender_id: Verified identity of the sender.
            body: Message text (caption for attachments).
            kind: text, image or file.
            attachment_url: Reference URL, required for image and file.

        Returns:
            The persisted message with the sender summary populated.

        Raises:
            NotAuthorizedError: Sender is not a participant.
            ValidationError: Body or attachment missing for the kind.
            PersistenceError: The store failed; nothing was broadcast.
        """
        try:
            self._membership.authorize(conversation_id, sender_id)
        except NotFoundError:
            logger.warning(
                "[Pipeline] Rejected message from %s: not a participant of %s",
                sender_id, conversation_id,
            )
            raise NotAuthorizedError("Sender is not a participant of this conversation") from None

        kind = self._validate(body, kind, attachment_url)

        # Every store read precedes the write; a failure here stores nothing.
        sender = self._store.get_user(sender_id)

        message = self._store.create_message(Message(
            conversationId=conversation_id,
            senderId=sender_id,
            body=body or "",
            kind=kind,
            attachmentUrl=attachment_url or None,
            readBy=[sender_id],
        ))
        self._store.set_last_message(conversation_id, message.id)
        if sender is not None:
            message.sender = UserSummary.from_user(sender)

        logger.info(
            "[Pipeline] Stored %s message %s from %s in %s",
            kind.value, message.id, sender_id, conversation_id,
        )
        await self._broadcaster.deliver_message(message)
        self._presence.touch(sender_id)
        return message

    def _validate(
        self, body: str, kind: MessageKind, attachment_url: Optional[str]
    ) -> MessageKind:
        try:
            kind = MessageKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown message kind: {kind}") from None

        if kind == MessageKind.TEXT:
            if not body or not body.strip():
                raise ValidationError("Message text is required")
        elif not attachment_url or not attachment_url.strip():
            raise ValidationError(f"An attachment URL is required for {kind.value} messages")

        if body and len(body) > self.settings.max_message_length:
            raise ValidationError(
                f"Message exceeds {self.settings.max_message_length} characters"
            )
        return kind

    # =========================================================================
    # Read side
    # =========================================================================

    def history(
        self,
        conversation_id: str,
        user_id: str,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
        before_id: Optional[str] = None,
    ) -> List[Message]:
        """Chronological, non-deleted history for a participant.

        Args:
            conversation_id: Conversation to read.
            user_id: Reader; must be a participant.
            before: Only messages created before this time.
            limit: Page size, capped at ``max_history_page_size``.
            before_id: Only messages stored before this message of the same
                conversation. This is the cursor clients page with.

        Raises:
            NotFoundError: Reader is not a participant, or ``before_id`` is
                not a message of this conversation.
        """
        self._membership.authorize(conversation_id, user_id)
        if before_id is not None:
            cursor = self._store.get_message(before_id)
            if cursor is None or cursor.conversationId != conversation_id:
                raise NotFoundError("Cursor message not found")
        if before is not None and before.tzinfo is not None:
            before = before.astimezone(timezone.utc).replace(tzinfo=None)
        limit = limit or self.settings.history_page_size
        limit = min(limit, self.settings.max_history_page_size)
        return self._store.list_messages(
            conversation_id, before=before, limit=limit, before_id=before_id
        )

    async def mark_read(self, message_id: str, user_id: str) -> Message:
        """Add ``user_id`` to a message's receipt set. Idempotent."""
        message = self._get_message(message_id)
        self._membership.authorize(message.conversationId, user_id)

        if user_id in message.readBy:
            return message
        updated = self._store.add_read_receipt(message_id, user_id)
        if updated is None:
            raise NotFoundError("Message not found")
        await self._broadcaster.broadcast_read_receipt(updated)
        return updated

    async def soft_delete(self, message_id: str, user_id: str) -> Message:
        """Flag a message as deleted. Only its sender may do this."""
        message = self._get_message(message_id)
        self._membership.authorize(message.conversationId, user_id)
        if message.senderId != user_id:
            raise NotAuthorizedError("Only the sender can delete a message")
        if message.isDeleted:
            return message

        deleted = self._store.soft_delete_message(message_id)
        if deleted is None:
            raise NotFoundError("Message not found")
        logger.info("[Pipeline] Message %s soft-deleted by %s", message_id, user_id)
        await self._broadcaster.broadcast_deleted(deleted)
        return deleted

    def _get_message(self, message_id: str) -> Message:
        message = self._store.get_message(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        return message
