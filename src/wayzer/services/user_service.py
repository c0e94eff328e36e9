"""User service — account listing and admin moderation.

Blocking an account is the one place the server reaches out and ends a
session: the user's live sockets receive forced_logout and are closed,
and the realtime handshake refuses the account until it is unblocked.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wayzer.db.models import Chat, ChatMessage, ChatParticipant, Trip, TripParticipant, User
from wayzer.realtime.relay import EventRelay

logger = structlog.get_logger()

USER_STATUSES = ("active", "blocked")


class UserNotFoundError(Exception):
    pass


class InvalidStatusError(Exception):
    pass


class SelfModerationError(Exception):
    """Admins cannot block or delete their own account."""
    pass


class UserService:
    """Business logic for user accounts."""

    def __init__(self, db: AsyncSession, relay: Optional[EventRelay] = None):
        self.db = db
        self.relay = relay

    async def list_users(self) -> list[User]:
        result = await self.db.execute(select(User).order_by(User.created_at))
        return list(result.scalars().all())

    async def get_user(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    async def set_status(
        self, user_id: uuid.UUID, status: str, actor_id: Optional[uuid.UUID] = None
    ) -> User:
        """Change account status. Blocking logs the user out everywhere."""
        if status not in USER_STATUSES:
            raise InvalidStatusError(f"Invalid status '{status}'")
        if actor_id is not None and actor_id == user_id:
            raise SelfModerationError("Cannot change the status of your own account")

        user = await self.get_user(user_id)
        user.status = status
        await self.db.commit()
        logger.info("user.status_changed", user_id=str(user_id), status=status)

        if status == "blocked" and self.relay is not None:
            await self.relay.force_logout(str(user_id), reason="account_blocked")
        return user

    async def delete_user(
        self, user_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None
    ) -> None:
        """Remove an account with its trips, memberships and trip chats.

        Messages the user sent stay in their chats without a sender.
        """
        if actor_id is not None and actor_id == user_id:
            raise SelfModerationError("Cannot delete your own account")
        await self.get_user(user_id)

        trip_ids = select(Trip.id).where(Trip.creator_id == user_id)
        chat_ids = select(Chat.id).where(Chat.trip_id.in_(trip_ids))

        # Children first so the order works without ON DELETE support (SQLite).
        await self.db.execute(delete(ChatMessage).where(ChatMessage.chat_id.in_(chat_ids)))
        await self.db.execute(
            delete(ChatParticipant).where(ChatParticipant.chat_id.in_(chat_ids))
        )
        await self.db.execute(delete(Chat).where(Chat.trip_id.in_(trip_ids)))
        await self.db.execute(
            update(ChatMessage)
            .where(ChatMessage.trip_id.in_(trip_ids))
            .values(trip_id=None)
        )
        await self.db.execute(
            delete(TripParticipant).where(
                (TripParticipant.trip_id.in_(trip_ids))
                | (TripParticipant.user_id == user_id)
            )
        )
        await self.db.execute(delete(Trip).where(Trip.creator_id == user_id))

        await self.db.execute(
            update(ChatMessage)
            .where(ChatMessage.sender_id == user_id)
            .values(sender_id=None)
        )
        await self.db.execute(
            delete(ChatParticipant).where(ChatParticipant.user_id == user_id)
        )
        await self.db.execute(delete(User).where(User.id == user_id))
        await self.db.commit()
        logger.info("user.deleted", user_id=str(user_id))

        if self.relay is not None:
            await self.relay.force_logout(str(user_id), reason="account_deleted")
