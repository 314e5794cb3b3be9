"""Message endpoints.

Every endpoint goes through the message pipeline, which authorizes the
caller's conversation membership before touching message data.

Endpoints:
    GET    /messages/{conversation_id}   - Paginated history
    POST   /messages                     - Send a message (same path as the socket)
    PUT    /messages/{message_id}/read   - Mark a message as read
    DELETE /messages/{message_id}        - Soft-delete an own message
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.auth.dependencies import Identity, current_identity
from app.chat.hub import get_hub
from app.storage.schemas import MessageKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


class MessageCreate(BaseModel):
    """Request body for sending a message over HTTP."""
    conversationId: str = Field(..., min_length=1)
    text: str = ""
    kind: MessageKind = MessageKind.TEXT
    attachmentUrl: Optional[str] = None


@router.get("/{conversation_id}")
async def get_history(
    conversation_id: str,
    before: Optional[datetime] = Query(None, description="Only messages created before this time"),
    beforeId: Optional[str] = Query(None, description="Only messages sent before this message"),
    limit: Optional[int] = Query(None, ge=1, description="Number of messages to return"),
    identity: Identity = Depends(current_identity),
) -> JSONResponse:
    """Get message history for a conversation the caller belongs to.

    Clients page backwards by passing the ``id`` of the oldest message they
    hold as ``beforeId``. Messages sharing a ``createdAt`` stay on exactly
    one page.

    Returns:
        JSON with messages (oldest first) and a hasMore flag; 404 if the
        caller is not a participant or ``beforeId`` is not a message of
        this conversation.
    """
    pipeline = get_hub().pipeline
    messages = pipeline.history(
        conversation_id, identity.user_id, before=before, limit=limit, before_id=beforeId
    )

    has_more = False
    if messages:
        older = pipeline.history(
            conversation_id, identity.user_id, before=before, limit=1, before_id=messages[0].id
        )
        has_more = len(older) > 0

    return JSONResponse({
        "messages": [m.model_dump(mode="json") for m in messages],
        "hasMore": has_more,
    })


@router.post("", status_code=201)
async def send_message(
    body: MessageCreate,
    identity: Identity = Depends(current_identity),
) -> JSONResponse:
    """Send a message; it is persisted and broadcast to the conversation group."""
    message = await get_hub().pipeline.ingest(
        body.conversationId,
        identity.user_id,
        body.text,
        kind=body.kind,
        attachment_url=body.attachmentUrl,
    )
    return JSONResponse(message.model_dump(mode="json"), status_code=201)


@router.put("/{message_id}/read")
async def mark_read(
    message_id: str,
    identity: Identity = Depends(current_identity),
) -> JSONResponse:
    """Add the caller to the message's receipt set (idempotent)."""
    message = await get_hub().pipeline.mark_read(message_id, identity.user_id)
    return JSONResponse(message.model_dump(mode="json"))


@router.delete("/{message_id}")
async def delete_message(
    message_id: str,
    identity: Identity = Depends(current_identity),
) -> JSONResponse:
    """Soft-delete a message. Only its sender may do this."""
    message = await get_hub().pipeline.soft_delete(message_id, identity.user_id)
    logger.info("[messages] %s deleted by %s", message_id, identity.user_id)
    return JSONResponse(message.model_dump(mode="json"))
