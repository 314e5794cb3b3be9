"""User account endpoints.

Endpoints:
    POST /users                 - Create a user record (credentials live upstream)
    GET  /users/me              - The caller's own profile
    PUT  /users/me              - Update the caller's profile
    GET  /users/online          - Users with a live connection in this process
    GET  /users/search/{query}  - Find other users by name or email
    GET  /users/{user_id}       - User profile with presence and activity status
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.auth.dependencies import Identity, current_identity
from app.chat.errors import NotFoundError
from app.chat.hub import get_hub
from app.storage.schemas import Address, Preferences, User, UserRole, UserSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

SEARCH_LIMIT = 10


class UserCreate(BaseModel):
    """Request body for creating a user."""
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    role: UserRole = UserRole.CUSTOMER
    bio: str = Field(default="", max_length=500)
    phone: str = Field(default="", max_length=40)
    address: Address = Field(default_factory=Address)
    preferences: Preferences = Field(default_factory=Preferences)


class ProfileUpdate(BaseModel):
    """Request body for a profile update.

    Omitted fields keep their stored value. ``address`` and ``preferences``
    replace the stored object as a whole.
    """
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    bio: Optional[str] = Field(default=None, max_length=500)
    phone: Optional[str] = Field(default=None, max_length=40)
    address: Optional[Address] = None
    preferences: Optional[Preferences] = None


@router.post("", status_code=201)
async def create_user(body: UserCreate) -> JSONResponse:
    """Create a user.

    Returns:
        The created user (201), or 400 if the email is already registered.
    """
    user = get_hub().store.create_user(User(**body.model_dump()))
    logger.info("[users] Created %s (%s)", user.id, user.role.value)
    return JSONResponse(user.model_dump(mode="json"), status_code=201)


@router.get("/me")
async def get_own_profile(identity: Identity = Depends(current_identity)) -> dict:
    user = get_hub().store.get_user(identity.user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user.model_dump(mode="json")


@router.put("/me")
async def update_own_profile(
    body: ProfileUpdate,
    identity: Identity = Depends(current_identity),
) -> dict:
    """Update name, bio, phone, address and preferences of the caller.

    Returns:
        The updated user, or 404 if the caller has no user record.
    """
    store = get_hub().store
    user = store.get_user(identity.user_id)
    if user is None:
        raise NotFoundError("User not found")

    changes = body.model_dump(exclude_none=True)
    updated = store.update_profile(User.model_validate({**user.model_dump(), **changes}))
    if updated is None:
        raise NotFoundError("User not found")
    logger.info("[users] %s updated %s", identity.user_id, ", ".join(sorted(changes)) or "nothing")
    return updated.model_dump(mode="json")


@router.get("/online")
async def online_users(identity: Identity = Depends(current_identity)) -> dict:
    """List users that currently hold at least one live connection."""
    registry = get_hub().registry
    users = sorted(registry.online_users())
    return {"users": users, "total": len(users)}


@router.get("/search/{query}")
async def search_users(
    query: str,
    identity: Identity = Depends(current_identity),
) -> List[dict]:
    """Other users whose name or email contains ``query`` (case-insensitive)."""
    users = get_hub().store.search_users(
        query, exclude_id=identity.user_id, limit=SEARCH_LIMIT
    )
    return [UserSummary.from_user(u).model_dump(mode="json") for u in users]


@router.get("/{user_id}")
async def get_user(user_id: str, identity: Identity = Depends(current_identity)) -> dict:
    """Get a user with their live presence and activity classification."""
    hub = get_hub()
    user = hub.store.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return {
        **user.model_dump(mode="json"),
        "online": hub.registry.is_online(user.id),
        "activityStatus": hub.presence.activity_status(user.lastSeen),
    }
