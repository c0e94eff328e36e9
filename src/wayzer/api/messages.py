"""Chat API routes — conversations, messages, read state.

Every write here goes through MessageService, which notifies the
recipients' live sockets once the message is committed.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wayzer.api.deps import get_relay
from wayzer.auth.dependencies import CurrentIdentity, get_current_user
from wayzer.db.engine import get_db
from wayzer.realtime.relay import EventRelay
from wayzer.schemas.chat import (
    ConversationBuckets,
    MessageCreate,
    MessageRead,
    UnreadCount,
)
from wayzer.services.message_service import (
    InvalidRecipientError,
    MessageService,
    NotAParticipantError,
    RecipientNotFoundError,
)

router = APIRouter()


def _svc(
    db: AsyncSession = Depends(get_db),
    relay: EventRelay = Depends(get_relay),
) -> MessageService:
    return MessageService(db, relay)


async def _push_unread(svc: MessageService, user_id: uuid.UUID) -> None:
    """Keep the user's other tabs' unread badge in sync."""
    count = await svc.unread_count(user_id)
    await svc.relay.notify_unread_count(str(user_id), count)


# ─── Conversations ──────────────────────────────────────

@router.get("/conversations", response_model=ConversationBuckets)
async def list_conversations(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_svc),
):
    """The inbox: requested, private, public and archived chats."""
    return await svc.get_conversation_buckets(identity.uuid)


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_svc),
):
    return UnreadCount(unread_count=await svc.unread_count(identity.uuid))


# ─── Messages ───────────────────────────────────────────

@router.post("/messages", response_model=MessageRead, status_code=201)
async def send_message(
    body: MessageCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_svc),
):
    """Send to a chat (chatId) or start/continue a private chat (receiverId)."""
    try:
        return await svc.send_message(
            sender_id=identity.uuid,
            text=body.text,
            chat_id=body.chat_id,
            receiver_id=body.receiver_id,
            trip_id=body.trip_id,
            message_type=body.type,
        )
    except NotAParticipantError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except RecipientNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRecipientError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/messages/{chat_id}", response_model=list[MessageRead])
async def list_messages(
    chat_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_svc),
):
    """Full history of a chat, oldest first. Marks the chat as read."""
    try:
        messages = await svc.list_messages(chat_id, identity.uuid)
    except NotAParticipantError as e:
        raise HTTPException(status_code=403, detail=str(e))
    await _push_unread(svc, identity.uuid)
    return messages


@router.post("/mark-read", status_code=204)
async def mark_read(
    chat_id: uuid.UUID = Query(..., alias="chatId"),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_svc),
):
    await svc.mark_read(chat_id, identity.uuid)
    await _push_unread(svc, identity.uuid)
