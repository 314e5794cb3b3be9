"""Conversation endpoints.

Endpoints:
    GET  /conversations  - Conversations the caller participates in
    POST /conversations  - Start a conversation with other users
"""
import logging
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.auth.dependencies import Identity, current_identity
from app.chat.hub import get_hub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["conversations"])


class ConversationCreate(BaseModel):
    """Request body for creating a conversation. The caller is always added."""
    participants: List[str] = Field(..., min_length=1)


@router.get("")
async def list_conversations(identity: Identity = Depends(current_identity)) -> JSONResponse:
    """List the caller's conversations, most recently active first."""
    conversations = get_hub().membership.list_for(identity.user_id)
    return JSONResponse([c.model_dump(mode="json") for c in conversations])


@router.post("", status_code=201)
async def create_conversation(
    body: ConversationCreate,
    identity: Identity = Depends(current_identity),
) -> JSONResponse:
    """Create a conversation between the caller and ``participants``.

    Returns:
        The created conversation (201); 400 if fewer than two distinct
        participants result, 404 if a participant does not exist.
    """
    conversation = get_hub().membership.create_conversation(
        body.participants, identity.user_id
    )
    logger.info("[conversations] %s created by %s", conversation.id, identity.user_id)
    return JSONResponse(conversation.model_dump(mode="json"), status_code=201)
