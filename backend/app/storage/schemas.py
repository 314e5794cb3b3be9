"""Pydantic models for the documents kept in the chat store.

Field names are camelCase because these models are sent to clients as-is,
both over the WebSocket channel and from the HTTP routers.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Naive UTC timestamp, the form DuckDB TIMESTAMP columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, Enum):
    """Account role. Only ``admin`` carries extra permissions."""
    ADMIN = "admin"
    AGENT = "agent"
    CUSTOMER = "customer"
    DESIGNER = "designer"
    MERCHANT = "merchant"


class MessageKind(str, Enum):
    """Type tag of a message.

    Attributes:
        TEXT: Plain text; body must be non-blank.
        IMAGE: Image attachment; ``attachmentUrl`` required.
        FILE: Generic file attachment; ``attachmentUrl`` required.
    """
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class Address(BaseModel):
    """Postal address kept on a profile."""
    street: str = ""
    city: str = ""
    state: str = ""
    zipCode: str = ""
    country: str = ""


class Preferences(BaseModel):
    """Per-user notification and display preferences."""
    notifications: bool = True
    emailNotifications: bool = True
    darkMode: bool = False


class User(BaseModel):
    """A user account as stored (credentials live elsewhere)."""
    id: str = Field(default_factory=new_id, description="Unique user ID")
    name: str = Field(..., min_length=1, description="Display name")
    email: str = Field(..., min_length=3, description="Unique contact email")
    role: UserRole = Field(default=UserRole.CUSTOMER)
    bio: str = ""
    phone: str = ""
    address: Address = Field(default_factory=Address)
    preferences: Preferences = Field(default_factory=Preferences)
    isActive: bool = Field(default=True, description="Account enabled flag")
    lastSeen: datetime = Field(default_factory=utcnow)
    createdAt: datetime = Field(default_factory=utcnow)


class UserSummary(BaseModel):
    """Sender identity populated onto messages."""
    id: str
    name: str
    email: str
    role: UserRole

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(id=user.id, name=user.name, email=user.email, role=user.role)


class Conversation(BaseModel):
    """A set of participants plus a pointer to the most recent message."""
    id: str = Field(default_factory=new_id)
    participants: List[str] = Field(..., description="Participant user IDs (unique)")
    lastMessageId: Optional[str] = None
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)


class Message(BaseModel):
    """A persisted message.

    Immutable after creation except for ``readBy`` additions and ``isDeleted``.
    """
    id: str = Field(default_factory=new_id)
    conversationId: str
    senderId: str
    body: str = ""
    kind: MessageKind = MessageKind.TEXT
    attachmentUrl: Optional[str] = None
    readBy: List[str] = Field(default_factory=list)
    isDeleted: bool = False
    createdAt: datetime = Field(default_factory=utcnow)
    sender: Optional[UserSummary] = None
