"""FastAPI auth dependencies.

These are used as Depends() in route handlers to extract and validate
the current user from the Authorization: Bearer header.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from wayzer.auth.jwt import TokenError, verify_token
from wayzer.db.engine import get_db
from wayzer.db.models import User


class CurrentIdentity:
    """The authenticated user making the request."""

    def __init__(self, user_id: str, email: Optional[str] = None):
        self.user_id = user_id
        self.email = email

    @property
    def uuid(self) -> uuid.UUID:
        return uuid.UUID(self.user_id)


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth)."""
    if authorization and authorization.startswith("Bearer "):
        return _authenticate_jwt(authorization[7:])
    return None


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def require_admin(
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CurrentIdentity:
    """Allow only active users with the admin role (403 otherwise)."""
    user = await db.get(User, identity.uuid)
    if not user or user.role != "admin" or user.status != "active":
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity


def _authenticate_jwt(token: str) -> CurrentIdentity:
    try:
        payload = verify_token(token)
        uuid.UUID(payload["sub"])
    except (TokenError, ValueError) as e:
        raise HTTPException(
            status_code=401,
            detail=str(e) or "Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CurrentIdentity(user_id=payload["sub"], email=payload.get("email"))
