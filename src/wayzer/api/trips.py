"""Trip API routes — trips and join requests.

Accepting or rejecting a request posts a system message into the
private chat and refreshes both sides' conversation lists over the
socket (see TripService).
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from wayzer.api.deps import get_relay
from wayzer.auth.dependencies import CurrentIdentity, get_current_user
from wayzer.db.engine import get_db
from wayzer.realtime.relay import EventRelay
from wayzer.schemas.trip import JoinRequest, ParticipantRead, TripCreate, TripRead
from wayzer.services.trip_service import (
    AlreadyRequestedError,
    JoinRequestNotFoundError,
    PermissionDeniedError,
    TripNotFoundError,
    TripService,
)

router = APIRouter(prefix="/trips")


def _svc(
    db: AsyncSession = Depends(get_db),
    relay: EventRelay = Depends(get_relay),
) -> TripService:
    return TripService(db, relay)


@router.post("", response_model=TripRead, status_code=201)
async def create_trip(
    body: TripCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TripService = Depends(_svc),
):
    return await svc.create_trip(
        creator_id=identity.uuid,
        title=body.title,
        max_participants=body.max_participants,
    )


@router.get("", response_model=list[TripRead])
async def list_trips(svc: TripService = Depends(_svc)):
    return await svc.list_trips()


@router.get("/{trip_id}", response_model=TripRead)
async def get_trip(trip_id: uuid.UUID, svc: TripService = Depends(_svc)):
    try:
        return await svc.get_trip(trip_id)
    except TripNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{trip_id}/participants", response_model=list[ParticipantRead])
async def list_participants(trip_id: uuid.UUID, svc: TripService = Depends(_svc)):
    try:
        return await svc.list_participants(trip_id)
    except TripNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ─── Join requests ──────────────────────────────────────

@router.post("/{trip_id}/join", response_model=ParticipantRead, status_code=201)
async def request_join(
    trip_id: uuid.UUID,
    body: JoinRequest,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TripService = Depends(_svc),
):
    """Ask the trip creator for a place. Sends them a request message."""
    try:
        return await svc.request_join(trip_id, identity.uuid, body.message)
    except TripNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AlreadyRequestedError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{trip_id}/requests/{user_id}/accept", response_model=ParticipantRead)
async def accept_request(
    trip_id: uuid.UUID,
    user_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TripService = Depends(_svc),
):
    return await _decide(svc.accept_request, trip_id, user_id, identity.uuid)


@router.post("/{trip_id}/requests/{user_id}/reject", response_model=ParticipantRead)
async def reject_request(
    trip_id: uuid.UUID,
    user_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TripService = Depends(_svc),
):
    return await _decide(svc.reject_request, trip_id, user_id, identity.uuid)


async def _decide(action, trip_id, user_id, actor_id):
    try:
        return await action(trip_id, user_id, actor_id)
    except (TripNotFoundError, JoinRequestNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionDeniedError as e:
        raise HTTPException(status_code=403, detail=str(e))
