"""Admin API routes — account moderation.

Mounted with require_admin: only active admins reach these handlers.
Blocking or deleting an account force-logs-out its live sessions.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from wayzer.api.deps import get_relay
from wayzer.auth.dependencies import CurrentIdentity, require_admin
from wayzer.db.engine import get_db
from wayzer.realtime.relay import EventRelay
from wayzer.schemas.user import StatusChange, UserRead
from wayzer.services.user_service import (
    InvalidStatusError,
    SelfModerationError,
    UserNotFoundError,
    UserService,
)

router = APIRouter(prefix="/admin")


def _svc(
    db: AsyncSession = Depends(get_db),
    relay: EventRelay = Depends(get_relay),
) -> UserService:
    return UserService(db, relay)


@router.get("/users", response_model=list[UserRead])
async def list_users(svc: UserService = Depends(_svc)):
    return await svc.list_users()


@router.post("/users/{user_id}/status", response_model=UserRead)
async def change_status(
    user_id: uuid.UUID,
    body: StatusChange,
    identity: CurrentIdentity = Depends(require_admin),
    svc: UserService = Depends(_svc),
):
    """Block or unblock an account."""
    try:
        return await svc.set_status(user_id, body.status, actor_id=identity.uuid)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (InvalidStatusError, SelfModerationError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(
    user_id: uuid.UUID,
    identity: CurrentIdentity = Depends(require_admin),
    svc: UserService = Depends(_svc),
):
    try:
        await svc.delete_user(user_id, actor_id=identity.uuid)
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SelfModerationError as e:
        raise HTTPException(status_code=400, detail=str(e))
