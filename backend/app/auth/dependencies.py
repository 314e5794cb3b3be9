"""FastAPI dependencies that expose the verified caller identity.

The upstream auth layer authenticates the request and forwards the result
in two headers:
    X-User-Id    - verified user id
    X-User-Role  - verified role (defaults to "customer")
"""
import logging

from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel

from app.storage.schemas import UserRole

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    """The verified caller of a request."""
    user_id: str
    role: UserRole = UserRole.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


async def current_identity(
    x_user_id: str = Header(..., min_length=1),
    x_user_role: str = Header(UserRole.CUSTOMER.value),
) -> Identity:
    """Build the caller identity from the forwarded headers."""
    try:
        role = UserRole(x_user_role.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown role: {x_user_role}")
    return Identity(user_id=x_user_id, role=role)


async def require_admin(identity: Identity = Depends(current_identity)) -> Identity:
    """Reject non-admin callers with 403."""
    if not identity.is_admin:
        logger.warning("[Auth] Admin route denied for user %s", identity.user_id)
        raise HTTPException(status_code=403, detail="Access denied. Admin only.")
    return identity
