"""Pydantic schemas for users and admin account management."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    role: str
    status: str
    avatar_url: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class StatusChange(BaseModel):
    """Block or unblock an account."""
    status: str = Field(..., pattern=r"^(active|blocked)$")
