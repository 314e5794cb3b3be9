"""Live-channel event types.

Inbound events are parsed into explicit pydantic models, discriminated on
``type``, so the per-connection handler dispatches on a closed set of
events instead of probing raw dicts. Outbound events are built by the small
helpers at the bottom of this module.

Inbound:
    - identity_join: bind the connection to a user
    - group_join / group_leave: (un)subscribe to a conversation's broadcasts
    - send_message: ingest and broadcast a message
    - typing_start / typing_stop: ephemeral typing indicator
    - mark_read: add the user to a message's receipt set

Outbound:
    - identity_joined, group_joined, group_left: direct replies
    - message_received, message_error, typing_indicator, presence_update,
      read_receipt, message_deleted
"""
import json
from typing import Annotated, Literal, Optional, Union

import pydantic
from pydantic import BaseModel, Field, TypeAdapter

from app.storage.schemas import Message, MessageKind

from .errors import ChatError, ValidationError


class IdentityJoin(BaseModel):
    type: Literal["identity_join"]
    userId: str = Field(..., min_length=1)


class GroupJoin(BaseModel):
    type: Literal["group_join"]
    conversationId: str = Field(..., min_length=1)


class GroupLeave(BaseModel):
    type: Literal["group_leave"]
    conversationId: str = Field(..., min_length=1)


class SendMessage(BaseModel):
    """Client message submission. The server fills in id, readBy and timestamps."""
    type: Literal["send_message"]
    conversationId: str = Field(..., min_length=1)
    text: str = ""
    kind: MessageKind = MessageKind.TEXT
    attachmentUrl: Optional[str] = None
    # Optional echo of the sender; must match the connection's identity.
    senderId: Optional[str] = None


class Typing(BaseModel):
    type: Literal["typing_start", "typing_stop"]
    conversationId: str = Field(..., min_length=1)

    @property
    def starting(self) -> bool:
        return self.type == "typing_start"


class MarkRead(BaseModel):
    type: Literal["mark_read"]
    messageId: str = Field(..., min_length=1)


InboundEvent = Annotated[
    Union[IdentityJoin, GroupJoin, GroupLeave, SendMessage, Typing, MarkRead],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_event(raw: Union[str, dict]) -> BaseModel:
    """Parse a raw frame (text or decoded JSON) into an inbound event.

    Raises:
        ValidationError: On malformed JSON, unknown ``type`` or bad fields.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("Invalid event: not valid JSON") from None
    if not isinstance(raw, dict):
        raise ValidationError("Invalid event: expected a JSON object")
    try:
        return _inbound_adapter.validate_python(raw)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "event"
        raise ValidationError(f"Invalid event ({location}): {first.get('msg')}") from None


# =============================================================================
# Outbound builders
# =============================================================================


def message_received(message: Message) -> dict:
    return {"type": "message_received", **message.model_dump(mode="json")}


def message_error(error: ChatError) -> dict:
    return {"type": "message_error", "error": error.message, "code": error.code}


def typing_indicator(user_id: str, conversation_id: str, is_typing: bool) -> dict:
    return {
        "type": "typing_indicator",
        "userId": user_id,
        "conversationId": conversation_id,
        "isTyping": is_typing,
    }


def presence_update(user_id: str, online: bool, total_online: int) -> dict:
    return {
        "type": "presence_update",
        "userId": user_id,
        "status": "online" if online else "offline",
        "totalOnline": total_online,
    }


def read_receipt(message: Message) -> dict:
    return {
        "type": "read_receipt",
        "messageId": message.id,
        "conversationId": message.conversationId,
        "readBy": list(message.readBy),
    }


def message_deleted(message: Message) -> dict:
    return {
        "type": "message_deleted",
        "messageId": message.id,
        "conversationId": message.conversationId,
    }
