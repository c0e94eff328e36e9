"""Pydantic schemas for trips and join requests."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class TripCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    max_participants: int = Field(default=2, ge=2, le=100)


class TripRead(BaseModel):
    id: uuid.UUID
    creator_id: uuid.UUID
    title: str
    max_participants: int
    created_at: datetime

    model_config = {"from_attributes": True}


class JoinRequest(BaseModel):
    message: str = Field(default="", max_length=2000)


class ParticipantRead(BaseModel):
    trip_id: uuid.UUID
    user_id: uuid.UUID
    status: str

    model_config = {"from_attributes": True}
