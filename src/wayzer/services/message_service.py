"""Message service — chats, chat messages, read state, conversation lists.

Every write follows the same order:
1. Validate membership (only participants may post or read)
2. Insert and commit
3. Hand the committed message to the EventRelay

Step 3 is an explicit call on an injected relay rather than a side effect
buried in the HTTP handler, so anything that stores a message (REST,
the trip join flow, system announcements) notifies the same way.
"""

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

import structlog
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from wayzer.db.models import Chat, ChatMessage, ChatParticipant, Trip, User, utcnow
from wayzer.realtime.relay import EventRelay, MessageCreated
from wayzer.schemas.chat import (
    ConversationBuckets,
    ConversationRead,
    LastMessage,
    MessageRead,
    SenderRead,
)

logger = structlog.get_logger()


class NotAParticipantError(Exception):
    """Raised when a user acts on a chat they are not a member of."""
    pass


class RecipientNotFoundError(Exception):
    """Raised when a direct message targets an unknown user."""
    pass


class InvalidRecipientError(Exception):
    """Raised when a user tries to message themselves."""
    pass


class MessageService:
    """Business logic for chats and chat messages."""

    def __init__(self, db: AsyncSession, relay: Optional[EventRelay] = None):
        self.db = db
        self.relay = relay

    # ─── Send ────────────────────────────────────────────

    async def send_message(
        self,
        sender_id: uuid.UUID,
        text: str,
        chat_id: Optional[uuid.UUID] = None,
        receiver_id: Optional[uuid.UUID] = None,
        trip_id: Optional[uuid.UUID] = None,
        message_type: str = "general",
    ) -> MessageRead:
        """Post a user message to a chat, creating the private chat if needed.

        With chat_id the sender must already be a participant. With only
        receiver_id the private chat of the pair is reused or created; a
        new chat starts "requested" unless the message itself is a join
        request, which makes the chat "active".
        """
        if chat_id is not None:
            if not await self.is_participant(chat_id, sender_id):
                raise NotAParticipantError(f"Not a participant of chat {chat_id}")
            chat = await self.db.get(Chat, chat_id)
        else:
            if receiver_id is None:
                raise ValueError("chat_id or receiver_id is required")
            chat = await self._get_or_create_private_chat(
                sender_id, receiver_id, message_type
            )

        msg = ChatMessage(
            chat_id=chat.id,
            sender_id=sender_id,
            text=text,
            type=message_type,
            trip_id=trip_id,
        )
        self.db.add(msg)
        if message_type == "request":
            chat.status = "active"
        await self.db.flush()
        await self.db.commit()

        sender = await self.db.get(User, sender_id)
        result = _to_read(msg, sender)
        await self._emit(result, sender_id=sender_id)
        return result

    async def post_system_message(
        self,
        chat_id: uuid.UUID,
        text: str,
        color: str = "yellow",
        trip_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> MessageRead:
        """Post a sender-less message and notify the participants.

        actor_id is the user whose action produced the message; they are
        not notified about it.
        """
        msg = ChatMessage(
            chat_id=chat_id,
            sender_id=None,
            text=text,
            type=color,
            trip_id=trip_id,
        )
        self.db.add(msg)
        await self.db.flush()
        await self.db.commit()

        result = _to_read(msg, None)
        await self._emit(result, sender_id=None, skip_id=actor_id)
        return result

    async def _emit(
        self,
        message: MessageRead,
        sender_id: Optional[uuid.UUID],
        skip_id: Optional[uuid.UUID] = None,
    ) -> None:
        if self.relay is None:
            return
        participants = [
            p for p in await self.participant_ids(message.chat_id) if p != skip_id
        ]
        event = MessageCreated(
            chat_id=str(message.chat_id),
            message=message.model_dump(mode="json", by_alias=True),
            sender_id=str(sender_id) if sender_id else None,
            participant_ids=[str(p) for p in participants],
        )
        try:
            await self.relay.on_message_created(event)
        except Exception as e:
            # The message is committed; a notification failure must not undo that.
            logger.error("relay.emit_failed", chat_id=str(message.chat_id), error=str(e))

    # ─── Chats ───────────────────────────────────────────

    async def find_private_chat(
        self, user_a: uuid.UUID, user_b: uuid.UUID
    ) -> Optional[Chat]:
        if user_a == user_b:
            return None
        p1 = aliased(ChatParticipant)
        p2 = aliased(ChatParticipant)
        result = await self.db.execute(
            select(Chat)
            .join(p1, and_(p1.chat_id == Chat.id, p1.user_id == user_a))
            .join(p2, and_(p2.chat_id == Chat.id, p2.user_id == user_b))
            .where(Chat.type == "private")
            .limit(1)
        )
        return result.scalars().first()

    async def _get_or_create_private_chat(
        self,
        sender_id: uuid.UUID,
        receiver_id: uuid.UUID,
        message_type: str,
    ) -> Chat:
        if sender_id == receiver_id:
            raise InvalidRecipientError("Cannot send a message to yourself")
        if await self.db.get(User, receiver_id) is None:
            raise RecipientNotFoundError(f"User {receiver_id} not found")

        chat = await self.find_private_chat(sender_id, receiver_id)
        if chat:
            return chat

        chat = Chat(
            type="private",
            status="active" if message_type == "request" else "requested",
        )
        self.db.add(chat)
        await self.db.flush()
        self.db.add_all([
            ChatParticipant(chat_id=chat.id, user_id=sender_id),
            ChatParticipant(chat_id=chat.id, user_id=receiver_id),
        ])
        await self.db.flush()
        return chat

    async def add_participants(
        self, chat_id: uuid.UUID, user_ids: Iterable[uuid.UUID]
    ) -> None:
        """Add users to a chat; existing members are left untouched."""
        existing = set(await self.participant_ids(chat_id))
        for user_id in user_ids:
            if user_id not in existing:
                self.db.add(ChatParticipant(chat_id=chat_id, user_id=user_id))
                existing.add(user_id)
        await self.db.flush()

    async def participant_ids(self, chat_id: uuid.UUID) -> list[uuid.UUID]:
        result = await self.db.execute(
            select(ChatParticipant.user_id)
            .where(ChatParticipant.chat_id == chat_id)
            .order_by(ChatParticipant.id)
        )
        return list(result.scalars().all())

    async def is_participant(self, chat_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(ChatParticipant.id).where(
                ChatParticipant.chat_id == chat_id,
                ChatParticipant.user_id == user_id,
            )
        )
        return result.first() is not None

    # ─── Read ────────────────────────────────────────────

    async def list_messages(
        self, chat_id: uuid.UUID, user_id: uuid.UUID
    ) -> list[MessageRead]:
        """All messages of a chat, oldest first. Marks the chat as read."""
        if not await self.is_participant(chat_id, user_id):
            raise NotAParticipantError(f"Not a participant of chat {chat_id}")

        await self.mark_read(chat_id, user_id)

        result = await self.db.execute(
            select(ChatMessage, User)
            .outerjoin(User, ChatMessage.sender_id == User.id)
            .where(ChatMessage.chat_id == chat_id)
            .order_by(ChatMessage.created_at, ChatMessage.id)
        )
        return [_to_read(msg, sender) for msg, sender in result.all()]

    async def mark_read(self, chat_id: uuid.UUID, user_id: uuid.UUID) -> None:
        await self.db.execute(
            update(ChatParticipant)
            .where(
                ChatParticipant.chat_id == chat_id,
                ChatParticipant.user_id == user_id,
            )
            .values(last_read_at=utcnow())
        )
        await self.db.commit()

    def _unread_query(self, user_id: uuid.UUID):
        """Messages newer than the user's last read mark, not sent by them."""
        return (
            select(func.count(ChatMessage.id))
            .join(
                ChatParticipant,
                and_(
                    ChatParticipant.chat_id == ChatMessage.chat_id,
                    ChatParticipant.user_id == user_id,
                ),
            )
            .where(
                or_(
                    ChatParticipant.last_read_at.is_(None),
                    ChatMessage.created_at > ChatParticipant.last_read_at,
                ),
                or_(
                    ChatMessage.sender_id.is_(None),
                    ChatMessage.sender_id != user_id,
                ),
            )
        )

    async def unread_count(self, user_id: uuid.UUID) -> int:
        result = await self.db.execute(self._unread_query(user_id))
        return int(result.scalar() or 0)

    async def get_conversations(self, user_id: uuid.UUID) -> list[ConversationRead]:
        """The user's chats with last message, counterpart and unread count.

        Most recent activity first.
        """
        result = await self.db.execute(
            select(Chat)
            .join(ChatParticipant, ChatParticipant.chat_id == Chat.id)
            .where(ChatParticipant.user_id == user_id)
        )
        chats = list(result.scalars().unique().all())

        conversations = []
        for chat in chats:
            conversations.append(await self._conversation(chat, user_id))

        chat_created = {chat.id: chat.created_at for chat in chats}
        def activity(conv: ConversationRead):
            if conv.last_message:
                return _as_utc(conv.last_message.created_at)
            return _as_utc(chat_created[conv.chat_id])

        conversations.sort(key=activity, reverse=True)
        return conversations

    async def _conversation(self, chat: Chat, user_id: uuid.UUID) -> ConversationRead:
        last = (
            await self.db.execute(
                select(ChatMessage)
                .where(ChatMessage.chat_id == chat.id)
                .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
                .limit(1)
            )
        ).scalars().first()

        other = (
            await self.db.execute(
                select(User)
                .join(ChatParticipant, ChatParticipant.user_id == User.id)
                .where(ChatParticipant.chat_id == chat.id, User.id != user_id)
                .order_by(ChatParticipant.id)
                .limit(1)
            )
        ).scalars().first()

        unread = (
            await self.db.execute(
                self._unread_query(user_id).where(ChatMessage.chat_id == chat.id)
            )
        ).scalar()

        trip_title = None
        if chat.trip_id:
            trip = await self.db.get(Trip, chat.trip_id)
            trip_title = trip.title if trip else None

        return ConversationRead(
            chat_id=chat.id,
            chat_type=chat.type,
            chat_status=chat.status,
            trip_id=chat.trip_id,
            trip_title=trip_title,
            other_user_id=other.id if other else None,
            other_user_name=other.name if other else None,
            other_user_avatar_url=other.avatar_url if other else None,
            last_message=LastMessage.model_validate(last) if last else None,
            unread_count=int(unread or 0),
        )

    async def get_conversation_buckets(self, user_id: uuid.UUID) -> ConversationBuckets:
        """Group conversations the way the inbox shows them."""
        buckets = ConversationBuckets()
        seen: set[uuid.UUID] = set()
        for conv in await self.get_conversations(user_id):
            if conv.chat_id in seen:
                continue
            seen.add(conv.chat_id)
            if conv.chat_status == "archived":
                buckets.archived.append(conv)
            elif conv.chat_status == "requested":
                buckets.requested.append(conv)
            elif conv.chat_type == "public":
                buckets.public.append(conv)
            else:
                buckets.private.append(conv)
        return buckets

    async def push_conversations(self, user_ids: Iterable[uuid.UUID]) -> None:
        """Send each user a fresh conversation list over the socket."""
        if self.relay is None:
            return
        for user_id in user_ids:
            if self.relay.fanout is None and not self.relay.registry.is_online(str(user_id)):
                continue
            buckets = await self.get_conversation_buckets(user_id)
            await self.relay.notify_conversations(
                str(user_id), buckets.model_dump(mode="json", by_alias=True)
            )


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; rows created in this session are aware.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _to_read(msg: ChatMessage, sender: Optional[User]) -> MessageRead:
    return MessageRead(
        id=msg.id,
        chat_id=msg.chat_id,
        sender_id=msg.sender_id,
        text=msg.text,
        type=msg.type,
        trip_id=msg.trip_id,
        created_at=msg.created_at,
        sender=(
            SenderRead(id=sender.id, name=sender.name, avatar_url=sender.avatar_url)
            if sender
            else None
        ),
    )
