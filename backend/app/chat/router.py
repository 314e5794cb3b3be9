"""Chat router providing the live WebSocket channel.

This module provides:
    - WebSocket /ws/chat: real-time messaging, typing and presence

The WebSocket protocol supports:
    - Identity registration (multi-device: many connections per user)
    - Conversation group subscription
    - Message submission with persistence before broadcast
    - Typing indicators
    - Read receipts
    - Global presence updates

Protocol Message Types (inbound):
    - identity_join: Bind this connection to a user
    - group_join / group_leave: Subscribe to a conversation's broadcasts
    - send_message: Chat message
    - typing_start / typing_stop: Typing indicator
    - mark_read: Mark a message as read
"""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from . import events
from .errors import ChatError
from .hub import get_hub
from .session import ChatSession

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for real-time chat.

    Each connection runs its own receive loop; events from one connection
    are handled in order, and an error in one event never closes the socket.

    Protocol Flow:
        1. Client connects (no identity yet)
        2. Client sends: {type: "identity_join", userId}
           → First connection of the user: everyone gets
             {type: "presence_update", userId, status: "online", totalOnline}
           → Client gets: {type: "identity_joined", userId, online: [...]}
        3. Client sends: {type: "group_join", conversationId}
           → Client gets: {type: "group_joined", conversationId}
        4. Client sends: {type: "send_message", conversationId, text}
           → Group gets: {type: "message_received", ...message}
        5. Client sends: {type: "typing_start" | "typing_stop", conversationId}
           → Group (minus sender) gets: {type: "typing_indicator", ...}
        6. Client sends: {type: "mark_read", messageId}
           → Group gets: {type: "read_receipt", messageId, readBy: [...]}
        7. On disconnect (last connection of the user) → everyone gets
           {type: "presence_update", status: "offline"}

    Errors are reported only to the originating connection as
    {type: "message_error", error, code}.

    Args:
        websocket: The WebSocket connection.
    """
    await websocket.accept()
    session = ChatSession(get_hub(), websocket)
    logger.info("[WS] Connection accepted")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                reply = await session.handle(raw)
            except ChatError as exc:
                logger.info("[WS] %s from %s: %s", exc.code, session.user_id, exc.message)
                reply = events.message_error(exc)
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info("[WS] User %s disconnected", session.user_id or "anonymous")
    finally:
        await session.close()
