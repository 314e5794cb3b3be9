"""Conversation membership resolver.

``authorize`` is the single authorization boundary for conversation access:
every message read or write calls it before touching message data.
"""
import logging
from typing import Iterable, List, Optional

from app.storage.base import ChatStore
from app.storage.schemas import Conversation

from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MIN_PARTICIPANTS = 2


class MembershipResolver:
    """Authorizes conversation access and manages participant sets."""

    def __init__(self, store: ChatStore) -> None:
        self._store = store

    def authorize(self, conversation_id: str, user_id: str) -> Conversation:
        """Return the conversation if ``user_id`` is one of its participants.

        Raises:
            NotFoundError: No conversation with that id has the user in it.
                Missing conversations and foreign conversations are
                indistinguishable to the caller.
        """
        conversation = self._store.find_conversation(conversation_id, user_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    def create_conversation(
        self, participant_ids: Iterable[str], creator_id: str
    ) -> Conversation:
        """Create a conversation from the union of participants and creator.

        Raises:
            ValidationError: Fewer than two distinct participants.
            NotFoundError: A participant has no user record.
        """
        participants = {p.strip() for p in participant_ids if p and p.strip()}
        participants.add(creator_id)
        if len(participants) < MIN_PARTICIPANTS:
            raise ValidationError(
                f"A conversation needs at least {MIN_PARTICIPANTS} distinct participants"
            )
        for user_id in sorted(participants):
            if self._store.get_user(user_id) is None:
                raise NotFoundError(f"User not found: {user_id}")

        conversation = self._store.create_conversation(sorted(participants))
        logger.info(
            "[Membership] Conversation %s created by %s with %d participants",
            conversation.id, creator_id, len(conversation.participants),
        )
        return conversation

    def remove_participant(
        self, conversation_id: str, user_id: str
    ) -> Optional[Conversation]:
        """Pull a user from a conversation, deleting it once nobody is left.

        Returns:
            The updated conversation, or None if it was deleted (or missing).
        """
        conversation = self._store.pull_participant(conversation_id, user_id)
        if conversation is None:
            return None
        if not conversation.participants:
            self._store.delete_conversation(conversation_id)
            logger.info("[Membership] Conversation %s deleted (no participants)", conversation_id)
            return None
        return conversation

    def remove_user_everywhere(self, user_id: str) -> int:
        """Remove a user from every conversation they belong to."""
        conversations = self._store.list_conversations_for(user_id)
        for conversation in conversations:
            self.remove_participant(conversation.id, user_id)
        return len(conversations)

    def list_for(self, user_id: str) -> List[Conversation]:
        return self._store.list_conversations_for(user_id)
