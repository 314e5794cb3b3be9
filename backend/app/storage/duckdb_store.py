"""DuckDB-backed document store for users, conversations and messages.

DuckDB is embedded, so this runs in-process with no server to manage.
Participant sets and receipt sets are stored as ``VARCHAR[]`` list columns,
which keeps each conversation and message a single self-contained row.

Database Schema:
    users:          id, name, email (unique), role, bio, phone,
                    is_active, last_seen, created_at,
                    address (JSON text), preferences (JSON text)
    conversations:  id, participants VARCHAR[], last_message_id,
                    created_at, updated_at
    messages:       seq, id, conversation_id, sender_id, body, kind,
                    attachment_url, read_by VARCHAR[], is_deleted, created_at

Thread Safety:
    The DuckDB connection is NOT thread-safe. All calls are made from the
    event loop thread; each process has its own connection.

Usage:
    store = DuckDBChatStore.get_instance("chat.duckdb")
    user = store.create_user(User(name="Ada", email="ada@example.com"))
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Tuple

import duckdb

from app.chat.errors import PersistenceError, ValidationError

from .base import ChatStore
from .schemas import (
    Address,
    Conversation,
    Message,
    MessageKind,
    Preferences,
    User,
    UserRole,
    UserSummary,
    utcnow,
)

logger = logging.getLogger(__name__)

# List columns are rewritten on update, so conversations and messages carry
# no primary key index; ids are UUIDs generated by the application.
_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id          VARCHAR PRIMARY KEY,
        name        VARCHAR NOT NULL,
        email       VARCHAR NOT NULL UNIQUE,
        role        VARCHAR NOT NULL DEFAULT 'customer',
        bio         VARCHAR NOT NULL DEFAULT '',
        phone       VARCHAR NOT NULL DEFAULT '',
        is_active   BOOLEAN NOT NULL DEFAULT TRUE,
        last_seen   TIMESTAMP NOT NULL,
        created_at  TIMESTAMP NOT NULL,
        address     VARCHAR NOT NULL DEFAULT '{}',
        preferences VARCHAR NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id              VARCHAR NOT NULL,
        participants    VARCHAR[] NOT NULL,
        last_message_id VARCHAR,
        created_at      TIMESTAMP NOT NULL,
        updated_at      TIMESTAMP NOT NULL
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS messages (
        seq             BIGINT DEFAULT nextval('messages_seq'),
        id              VARCHAR NOT NULL,
        conversation_id VARCHAR NOT NULL,
        sender_id       VARCHAR NOT NULL,
        body            VARCHAR NOT NULL DEFAULT '',
        kind            VARCHAR NOT NULL DEFAULT 'text',
        attachment_url  VARCHAR,
        read_by         VARCHAR[] NOT NULL,
        is_deleted      BOOLEAN NOT NULL DEFAULT FALSE,
        created_at      TIMESTAMP NOT NULL
    )
    """,
]

_USER_COLUMNS = (
    "id, name, email, role, bio, phone, is_active, last_seen, created_at, address, preferences"
)
_CONVERSATION_COLUMNS = "id, participants, last_message_id, created_at, updated_at"
_MESSAGE_SELECT = """
    SELECT m.id, m.conversation_id, m.sender_id, m.body, m.kind, m.attachment_url,
           m.read_by, m.is_deleted, m.created_at,
           u.id, u.name, u.email, u.role
    FROM messages m
    LEFT JOIN users u ON u.id = m.sender_id
"""


class DuckDBChatStore(ChatStore):
    """Singleton ChatStore implementation on top of DuckDB.

    Attributes:
        _instance: Singleton instance of the store.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["DuckDBChatStore"] = None
    _db_path: str = "chat.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[Store] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "DuckDBChatStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the singleton. Primarily used by tests."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        for statement in _SCHEMA:
            conn.execute(statement)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[duckdb.DuckDBPyConnection]:
        """Translate driver errors into ``PersistenceError``."""
        try:
            yield self._get_connection()
        except duckdb.Error as exc:
            logger.error("[Store] %s failed: %s", operation, exc)
            raise PersistenceError(f"Storage unavailable ({operation})") from exc

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    # -----------------------------------------------------------------------
    # Users
    # -----------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        if self.find_user_by_email(user.email) is not None:
            raise ValidationError(f"Email already registered: {user.email}")
        with self._guard("create_user") as conn:
            conn.execute(
                f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    user.id, user.name, user.email, user.role.value, user.bio,
                    user.phone, user.isActive, user.lastSeen, user.createdAt,
                    user.address.model_dump_json(), user.preferences.model_dump_json(),
                ],
            )
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._guard("get_user") as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", [user_id]
            ).fetchone()
        return self._row_to_user(row) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        with self._guard("find_user_by_email") as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE lower(email) = lower(?)", [email]
            ).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(
        self,
        seen_after: Optional[datetime] = None,
        seen_before: Optional[datetime] = None,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[User]:
        where, params = self._user_filter(seen_after, seen_before, search, role)
        sql = f"SELECT {_USER_COLUMNS} FROM users {where} ORDER BY created_at DESC, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        if offset:
            sql += " OFFSET ?"
            params.append(offset)
        with self._guard("list_users") as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_user(r) for r in rows]

    def search_users(
        self, query: str, exclude_id: Optional[str] = None, limit: int = 10
    ) -> List[User]:
        where, params = self._user_filter(search=query)
        if exclude_id is not None:
            where += " AND id <> ?"
            params.append(exclude_id)
        params.append(limit)
        with self._guard("search_users") as conn:
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users {where} ORDER BY name, id LIMIT ?",
                params,
            ).fetchall()
        return [self._row_to_user(r) for r in rows]

    def update_profile(self, user: User) -> Optional[User]:
        with self._guard("update_profile") as conn:
            conn.execute(
                "UPDATE users SET name = ?, bio = ?, phone = ?, address = ?, preferences = ? "
                "WHERE id = ?",
                [
                    user.name, user.bio, user.phone, user.address.model_dump_json(),
                    user.preferences.model_dump_json(), user.id,
                ],
            )
        return self.get_user(user.id)

    def touch_last_seen(self, user_id: str, when: datetime) -> bool:
        with self._guard("touch_last_seen") as conn:
            rows = conn.execute(
                "UPDATE users SET last_seen = ? WHERE id = ? RETURNING id", [when, user_id]
            ).fetchall()
        return len(rows) > 0

    def touch_last_seen_many(self, user_ids: Iterable[str], when: datetime) -> int:
        ids = list(user_ids)
        if not ids:
            return 0
        with self._guard("touch_last_seen_many") as conn:
            rows = conn.execute(
                "UPDATE users SET last_seen = ? "
                "WHERE list_contains(CAST(? AS VARCHAR[]), id) RETURNING id",
                [when, ids],
            ).fetchall()
        return len(rows)

    def set_user_active(self, user_id: str, is_active: bool) -> Optional[User]:
        with self._guard("set_user_active") as conn:
            conn.execute("UPDATE users SET is_active = ? WHERE id = ?", [is_active, user_id])
        return self.get_user(user_id)

    def delete_user(self, user_id: str) -> bool:
        with self._guard("delete_user") as conn:
            result = conn.execute(
                "DELETE FROM users WHERE id = ? RETURNING id", [user_id]
            ).fetchone()
        return result is not None

    def count_users(
        self,
        seen_after: Optional[datetime] = None,
        seen_before: Optional[datetime] = None,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> int:
        where, params = self._user_filter(seen_after, seen_before, search, role)
        with self._guard("count_users") as conn:
            return conn.execute(f"SELECT count(*) FROM users {where}", params).fetchone()[0]

    @staticmethod
    def _user_filter(
        seen_after: Optional[datetime] = None,
        seen_before: Optional[datetime] = None,
        search: Optional[str] = None,
        role: Optional[UserRole] = None,
    ) -> Tuple[str, list]:
        """Build the WHERE clause shared by user listing, counting and search."""
        clauses, params = [], []
        if seen_after is not None:
            clauses.append("last_seen > ?")
            params.append(seen_after)
        if seen_before is not None:
            clauses.append("last_seen <= ?")
            params.append(seen_before)
        if search:
            # contains() matches literally; no LIKE wildcards to escape.
            clauses.append("(contains(lower(name), lower(?)) OR contains(lower(email), lower(?)))")
            params.extend([search, search])
        if role is not None:
            clauses.append("role = ?")
            params.append(UserRole(role).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else "WHERE TRUE"
        return where, params

    # -----------------------------------------------------------------------
    # Conversations
    # -----------------------------------------------------------------------

    def create_conversation(self, participants: List[str]) -> Conversation:
        conversation = Conversation(participants=sorted(set(participants)))
        with self._guard("create_conversation") as conn:
            conn.execute(
                f"INSERT INTO conversations ({_CONVERSATION_COLUMNS}) "
                "VALUES (?, CAST(? AS VARCHAR[]), ?, ?, ?)",
                [
                    conversation.id, conversation.participants, None,
                    conversation.createdAt, conversation.updatedAt,
                ],
            )
        return conversation

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        with self._guard("get_conversation") as conn:
            row = conn.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
                [conversation_id],
            ).fetchone()
        return self._row_to_conversation(row) if row else None

    def find_conversation(
        self, conversation_id: str, participant: str
    ) -> Optional[Conversation]:
        with self._guard("find_conversation") as conn:
            row = conn.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations "
                "WHERE id = ? AND list_contains(participants, ?)",
                [conversation_id, participant],
            ).fetchone()
        return self._row_to_conversation(row) if row else None

    def list_conversations_for(self, user_id: str) -> List[Conversation]:
        with self._guard("list_conversations_for") as conn:
            rows = conn.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations "
                "WHERE list_contains(participants, ?) ORDER BY updated_at DESC",
                [user_id],
            ).fetchall()
        return [self._row_to_conversation(r) for r in rows]

    def pull_participant(
        self, conversation_id: str, user_id: str
    ) -> Optional[Conversation]:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return None
        remaining = [p for p in conversation.participants if p != user_id]
        with self._guard("pull_participant") as conn:
            conn.execute(
                "UPDATE conversations SET participants = CAST(? AS VARCHAR[]), updated_at = ? "
                "WHERE id = ?",
                [remaining, utcnow(), conversation_id],
            )
        return self.get_conversation(conversation_id)

    def delete_conversation(self, conversation_id: str) -> bool:
        with self._guard("delete_conversation") as conn:
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", [conversation_id])
            result = conn.execute(
                "DELETE FROM conversations WHERE id = ? RETURNING id", [conversation_id]
            ).fetchone()
        return result is not None

    def set_last_message(self, conversation_id: str, message_id: str) -> None:
        with self._guard("set_last_message") as conn:
            conn.execute(
                "UPDATE conversations SET last_message_id = ?, updated_at = ? WHERE id = ?",
                [message_id, utcnow(), conversation_id],
            )

    def list_all_conversations(self, offset: int = 0, limit: int = 20) -> List[Conversation]:
        with self._guard("list_all_conversations") as conn:
            rows = conn.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations "
                "ORDER BY updated_at DESC, id LIMIT ? OFFSET ?",
                [limit, offset],
            ).fetchall()
        return [self._row_to_conversation(r) for r in rows]

    def count_conversations(self) -> int:
        with self._guard("count_conversations") as conn:
            return conn.execute("SELECT count(*) FROM conversations").fetchone()[0]

    # -----------------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------------

    def create_message(self, message: Message) -> Message:
        with self._guard("create_message") as conn:
            conn.execute(
                """
                INSERT INTO messages
                  (id, conversation_id, sender_id, body, kind, attachment_url,
                   read_by, is_deleted, created_at)
                VALUES (?, ?, ?, ?, ?, ?, CAST(? AS VARCHAR[]), ?, ?)
                """,
                [
                    message.id, message.conversationId, message.senderId,
                    message.body, message.kind.value, message.attachmentUrl,
                    message.readBy, message.isDeleted, message.createdAt,
                ],
            )
        return message

    def get_message(self, message_id: str) -> Optional[Message]:
        with self._guard("get_message") as conn:
            row = conn.execute(f"{_MESSAGE_SELECT} WHERE m.id = ?", [message_id]).fetchone()
        return self._row_to_message(row) if row else None

    def list_messages(
        self,
        conversation_id: str,
        before: Optional[datetime] = None,
        limit: int = 50,
        include_deleted: bool = False,
        before_id: Optional[str] = None,
    ) -> List[Message]:
        clauses = ["m.conversation_id = ?"]
        params: list = [conversation_id]
        if not include_deleted:
            clauses.append("NOT m.is_deleted")
        if before is not None:
            clauses.append("m.created_at < ?")
            params.append(before)
        if before_id is not None:
            # seq is unique and follows insert order, unlike created_at.
            clauses.append("m.seq < (SELECT c.seq FROM messages c WHERE c.id = ?)")
            params.append(before_id)
        params.append(limit)
        with self._guard("list_messages") as conn:
            rows = conn.execute(
                f"{_MESSAGE_SELECT} WHERE {' AND '.join(clauses)} "
                "ORDER BY m.seq DESC LIMIT ?",
                params,
            ).fetchall()
        # Newest-first from the query; callers expect chronological order.
        return [self._row_to_message(r) for r in reversed(rows)]

    def add_read_receipt(self, message_id: str, user_id: str) -> Optional[Message]:
        with self._guard("add_read_receipt") as conn:
            conn.execute(
                "UPDATE messages SET read_by = list_append(read_by, ?) "
                "WHERE id = ? AND NOT list_contains(read_by, ?)",
                [user_id, message_id, user_id],
            )
        return self.get_message(message_id)

    def soft_delete_message(self, message_id: str) -> Optional[Message]:
        with self._guard("soft_delete_message") as conn:
            conn.execute("UPDATE messages SET is_deleted = TRUE WHERE id = ?", [message_id])
        return self.get_message(message_id)

    def delete_messages_by_sender(self, user_id: str) -> int:
        with self._guard("delete_messages_by_sender") as conn:
            rows = conn.execute(
                "DELETE FROM messages WHERE sender_id = ? RETURNING conversation_id", [user_id]
            ).fetchall()
            for conversation_id in {r[0] for r in rows}:
                conn.execute(
                    "UPDATE conversations SET last_message_id = ("
                    "    SELECT id FROM messages WHERE conversation_id = ? "
                    "    ORDER BY seq DESC LIMIT 1"
                    ") WHERE id = ?",
                    [conversation_id, conversation_id],
                )
        return len(rows)

    def list_all_messages(
        self, conversation_id: Optional[str] = None, offset: int = 0, limit: int = 50
    ) -> List[Message]:
        where, params = "", []
        if conversation_id is not None:
            where = "WHERE m.conversation_id = ?"
            params.append(conversation_id)
        params.extend([limit, offset])
        with self._guard("list_all_messages") as conn:
            rows = conn.execute(
                f"{_MESSAGE_SELECT} {where} ORDER BY m.seq DESC LIMIT ? OFFSET ?", params
            ).fetchall()
        return [self._row_to_message(r) for r in rows]

    def count_messages(self, conversation_id: Optional[str] = None) -> int:
        with self._guard("count_messages") as conn:
            if conversation_id is None:
                return conn.execute("SELECT count(*) FROM messages").fetchone()[0]
            return conn.execute(
                "SELECT count(*) FROM messages WHERE conversation_id = ?", [conversation_id]
            ).fetchone()[0]

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row) -> User:
        return User(
            id=row[0], name=row[1], email=row[2], role=UserRole(row[3]),
            bio=row[4], phone=row[5], isActive=row[6], lastSeen=row[7], createdAt=row[8],
            address=Address.model_validate_json(row[9]),
            preferences=Preferences.model_validate_json(row[10]),
        )

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row[0], participants=list(row[1] or []), lastMessageId=row[2],
            createdAt=row[3], updatedAt=row[4],
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        sender = None
        if row[9] is not None:
            sender = UserSummary(id=row[9], name=row[10], email=row[11], role=UserRole(row[12]))
        return Message(
            id=row[0], conversationId=row[1], senderId=row[2], body=row[3],
            kind=MessageKind(row[4]), attachmentUrl=row[5], readBy=list(row[6] or []),
            isDeleted=row[7], createdAt=row[8], sender=sender,
        )
