"""Abstract ChatStore interface.

The chat core only talks to persistence through this interface, so the
DuckDB implementation can be swapped (or replaced by a failing double in
tests) without touching the pipeline, membership or presence code.

Implementations raise ``app.chat.errors.PersistenceError`` when the backing
store fails; they never leak driver-specific exceptions.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from .schemas import Conversation, Message, User, UserRole


class ChatStore(ABC):
    """Persistence for users, conversations and messages."""

    # -- users --------------------------------------------------------------

    @abstractmethod
    def create_user(self, user: User) -> User:
        """Insert a user. Raises ``ValidationError`` on a duplicate email."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    def list_users(
        self,
        seen_after: Optional[datetime] = None,
        seen_before: Optional[datetime] = None,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[User]:
        """List users, newest first.

        Args:
            seen_after: Only users whose ``lastSeen`` is strictly later.
            seen_before: Only users whose ``lastSeen`` is at or before this.
            search: Case-insensitive substring of the name or email.
            role: Only users with this role.
            offset: Number of matching users to skip.
            limit: Maximum number of users to return (None for all).
        """

    @abstractmethod
    def search_users(
        self, query: str, exclude_id: Optional[str] = None, limit: int = 10
    ) -> List[User]:
        """Users whose name or email contains ``query``, ignoring case."""

    @abstractmethod
    def update_profile(self, user: User) -> Optional[User]:
        """Write the editable profile fields of ``user``.

        Only name, bio, phone, address and preferences are written; role,
        email, activity and timestamps are left alone. Returns None if the
        user does not exist.
        """

    @abstractmethod
    def touch_last_seen(self, user_id: str, when: datetime) -> bool:
        """Set ``lastSeen``. Returns False if the user does not exist."""

    @abstractmethod
    def touch_last_seen_many(self, user_ids: Iterable[str], when: datetime) -> int:
        """Set ``lastSeen`` for several users in one statement."""

    @abstractmethod
    def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        ...

    @abstractmethod
    def delete_user(self, user_id: str) -> bool:
        ...

    @abstractmethod
    def count_users(
        self,
        seen_after: Optional[datetime] = None,
        seen_before: Optional[datetime] = None,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> int:
        """Count users matching the same filters as ``list_users``."""

    # -- conversations ------------------------------------------------------

    @abstractmethod
    def create_conversation(self, participants: List[str]) -> Conversation:
        ...

    @abstractmethod
    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...

    @abstractmethod
    def find_conversation(
        self, conversation_id: str, participant: str
    ) -> Optional[Conversation]:
        """Return the conversation only if ``participant`` belongs to it."""

    @abstractmethod
    def list_conversations_for(self, user_id: str) -> List[Conversation]:
        ...

    @abstractmethod
    def pull_participant(
        self, conversation_id: str, user_id: str
    ) -> Optional[Conversation]:
        """Remove a participant and return the updated conversation."""

    @abstractmethod
    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation together with its messages."""

    @abstractmethod
    def set_last_message(self, conversation_id: str, message_id: str) -> None:
        ...

    @abstractmethod
    def list_all_conversations(self, offset: int = 0, limit: int = 20) -> List[Conversation]:
        """Every conversation, most recently updated first."""

    @abstractmethod
    def count_conversations(self) -> int:
        ...

    # -- messages -----------------------------------------------------------

    @abstractmethod
    def create_message(self, message: Message) -> Message:
        ...

    @abstractmethod
    def get_message(self, message_id: str) -> Optional[Message]:
        ...

    @abstractmethod
    def list_messages(
        self,
        conversation_id: str,
        before: Optional[datetime] = None,
        limit: int = 50,
        include_deleted: bool = False,
        before_id: Optional[str] = None,
    ) -> List[Message]:
        """Most recent ``limit`` messages before the cursor, oldest first.

        ``before_id`` is the strict cursor: only messages stored before that
        message are returned, so messages sharing a ``createdAt`` are never
        skipped between pages. ``before`` filters on ``createdAt`` and may be
        combined with it.
        """

    @abstractmethod
    def add_read_receipt(self, message_id: str, user_id: str) -> Optional[Message]:
        """Add ``user_id`` to ``readBy`` if absent. Idempotent."""

    @abstractmethod
    def soft_delete_message(self, message_id: str) -> Optional[Message]:
        ...

    @abstractmethod
    def delete_messages_by_sender(self, user_id: str) -> int:
        """Hard-delete every message sent by ``user_id``.

        Each conversation that lost messages gets its ``lastMessageId``
        pointed at its newest remaining message, or cleared when none is left.
        """

    @abstractmethod
    def list_all_messages(
        self, conversation_id: Optional[str] = None, offset: int = 0, limit: int = 50
    ) -> List[Message]:
        """Messages across conversations, newest first, including deleted ones."""

    @abstractmethod
    def count_messages(self, conversation_id: Optional[str] = None) -> int:
        ...

    def close(self) -> None:
        """Release resources. Default: nothing to release."""
