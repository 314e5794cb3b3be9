"""Admin endpoints (admin role only).

Endpoints:
    GET    /admin/presence               - Online/active overview and totals
    GET    /admin/users                  - Users, filtered by activity, search and role
    GET    /admin/messages               - Every message, newest first
    GET    /admin/conversations          - Every conversation, recently updated first
    PUT    /admin/users/{user_id}/status - Enable or disable an account
    DELETE /admin/users/{user_id}        - Delete a user and cascade
"""
import logging
import math
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.auth.dependencies import Identity, require_admin
from app.chat.errors import NotFoundError, ValidationError
from app.chat.hub import get_hub
from app.storage.schemas import UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


class UserStatusUpdate(BaseModel):
    """Request body for enabling/disabling an account."""
    isActive: bool


@router.get("/presence")
async def presence_overview(identity: Identity = Depends(require_admin)) -> dict:
    """Live presence plus lastSeen-based activity counts.

    ``online`` counts users with a live connection in this process;
    ``activeUsers`` counts users whose lastSeen falls inside the activity
    window, whichever process they are connected to.
    """
    hub = get_hub()
    total_users = hub.store.count_users()
    active_users = hub.store.count_users(seen_after=hub.presence.active_since())
    return {
        "online": hub.registry.online_count(),
        "onlineUsers": sorted(hub.registry.online_users()),
        "totalUsers": total_users,
        "activeUsers": active_users,
        "offlineUsers": total_users - active_users,
        "totalMessages": hub.store.count_messages(),
        "totalConversations": hub.store.count_conversations(),
        "activityWindowSeconds": hub.presence.settings.activity_window_seconds,
    }


def _page_info(total: int, page: int, limit: int) -> dict:
    return {"total": total, "currentPage": page, "totalPages": math.ceil(total / limit)}


@router.get("/users")
async def list_users(
    status: Optional[Literal["active", "offline"]] = Query(None),
    search: Optional[str] = Query(None, description="Substring of name or email"),
    role: Optional[UserRole] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(require_admin),
) -> dict:
    """List users, newest first, with their activity classification.

    Args:
        status: ``active`` or ``offline`` relative to the activity window.
        search: Case-insensitive substring of the name or email.
        role: Only users with this role.
        page: 1-based page number.
        limit: Users per page.
    """
    hub = get_hub()
    filters = {"search": search or None, "role": role}
    cutoff = hub.presence.active_since()
    if status == "active":
        filters["seen_after"] = cutoff
    elif status == "offline":
        filters["seen_before"] = cutoff

    users = hub.store.list_users(offset=(page - 1) * limit, limit=limit, **filters)
    total = hub.store.count_users(**filters)

    return {
        "users": [
            {
                **u.model_dump(mode="json"),
                "online": hub.registry.is_online(u.id),
                "activityStatus": hub.presence.activity_status(u.lastSeen),
            }
            for u in users
        ],
        **_page_info(total, page, limit),
    }


@router.get("/messages")
async def list_messages(
    conversationId: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    identity: Identity = Depends(require_admin),
) -> dict:
    """List messages across conversations, newest first.

    Soft-deleted messages are included and carry ``isDeleted``.
    """
    store = get_hub().store
    messages = store.list_all_messages(
        conversation_id=conversationId, offset=(page - 1) * limit, limit=limit
    )
    return {
        "messages": [m.model_dump(mode="json") for m in messages],
        **_page_info(store.count_messages(conversation_id=conversationId), page, limit),
    }


@router.get("/conversations")
async def list_conversations(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(require_admin),
) -> dict:
    """List conversations, most recently updated first, with their last message."""
    store = get_hub().store
    conversations = store.list_all_conversations(offset=(page - 1) * limit, limit=limit)

    items = []
    for conversation in conversations:
        last = store.get_message(conversation.lastMessageId) if conversation.lastMessageId else None
        items.append({
            **conversation.model_dump(mode="json"),
            "lastMessage": last.model_dump(mode="json") if last else None,
        })
    return {"conversations": items, **_page_info(store.count_conversations(), page, limit)}


@router.put("/users/{user_id}/status")
async def update_user_status(
    user_id: str,
    body: UserStatusUpdate,
    identity: Identity = Depends(require_admin),
) -> dict:
    """Enable or disable an account. Disabled users cannot identify on the socket."""
    user = get_hub().store.set_user_active(user_id, body.isActive)
    if user is None:
        raise NotFoundError("User not found")
    logger.info("[admin] %s set isActive=%s for %s", identity.user_id, body.isActive, user_id)
    return {"message": "User status updated", "user": user.model_dump(mode="json")}


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, identity: Identity = Depends(require_admin)) -> dict:
    """Delete a user, their messages, and their conversation memberships.

    Conversations that keep participants get their last-message reference
    moved to the newest remaining message; conversations left without
    participants are deleted with their messages.
    """
    if user_id == identity.user_id:
        raise ValidationError("Cannot delete your own account")

    hub = get_hub()
    if hub.store.get_user(user_id) is None:
        raise NotFoundError("User not found")

    deleted_messages = hub.store.delete_messages_by_sender(user_id)
    conversations = hub.membership.remove_user_everywhere(user_id)
    hub.store.delete_user(user_id)
    logger.info(
        "[admin] %s deleted user %s (%d messages, %d conversations)",
        identity.user_id, user_id, deleted_messages, conversations,
    )
    return {"message": "User deleted successfully"}
