"""Document store for users, conversations and messages."""

from .base import ChatStore
from .duckdb_store import DuckDBChatStore
from .schemas import (
    Address,
    Conversation,
    Message,
    MessageKind,
    Preferences,
    User,
    UserRole,
    UserSummary,
)

__all__ = [
    "Address",
    "ChatStore",
    "Conversation",
    "DuckDBChatStore",
    "Message",
    "MessageKind",
    "Preferences",
    "User",
    "UserRole",
    "UserSummary",
]
