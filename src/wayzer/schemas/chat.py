"""Pydantic schemas for chats and chat messages.

Field names go out in camelCase (chatId, senderId, ...) because the
browser client and the WebSocket frames use them; Python code keeps
snake_case via aliases.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ─── Messages ────────────────────────────────────────────

class MessageCreate(CamelModel):
    """Send to an existing chat (chatId) or to a user (receiverId)."""
    text: str = Field(..., min_length=1, max_length=4000)
    chat_id: Optional[uuid.UUID] = None
    receiver_id: Optional[uuid.UUID] = None
    trip_id: Optional[uuid.UUID] = None
    type: str = Field(default="general", pattern=r"^(general|request)$")

    @model_validator(mode="after")
    def require_target(self):
        if self.chat_id is None and self.receiver_id is None:
            raise ValueError("chatId or receiverId is required")
        return self


class SenderRead(CamelModel):
    id: uuid.UUID
    name: str
    avatar_url: Optional[str] = None


class MessageRead(CamelModel):
    id: int
    chat_id: uuid.UUID
    sender_id: Optional[uuid.UUID]
    text: str
    type: str
    trip_id: Optional[uuid.UUID] = None
    created_at: datetime
    sender: Optional[SenderRead] = None


# ─── Conversations ───────────────────────────────────────

class LastMessage(CamelModel):
    id: int
    sender_id: Optional[uuid.UUID]
    text: str
    trip_id: Optional[uuid.UUID] = None
    created_at: datetime


class ConversationRead(CamelModel):
    chat_id: uuid.UUID
    chat_type: str
    chat_status: str
    trip_id: Optional[uuid.UUID] = None
    trip_title: Optional[str] = None
    other_user_id: Optional[uuid.UUID] = None
    other_user_name: Optional[str] = None
    other_user_avatar_url: Optional[str] = None
    last_message: Optional[LastMessage] = None
    unread_count: int = 0


class ConversationBuckets(CamelModel):
    requested: list[ConversationRead] = Field(default_factory=list)
    private: list[ConversationRead] = Field(default_factory=list)
    public: list[ConversationRead] = Field(default_factory=list)
    archived: list[ConversationRead] = Field(default_factory=list)


class UnreadCount(CamelModel):
    unread_count: int
