"""Trip service — trips, join requests, and the chats they open.

A join request is a chat message of type "request" from the traveller to
the trip creator. Accepting or rejecting it posts a coloured system
message (green / red) into that private chat. Trips for three or more
people also get a public trip chat holding every accepted participant;
joins are announced there with yellow system messages.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wayzer.db.models import Chat, Trip, TripParticipant, User
from wayzer.realtime.relay import EventRelay
from wayzer.services.message_service import MessageService

logger = structlog.get_logger()

PUBLIC_CHAT_MIN_PARTICIPANTS = 3


class TripNotFoundError(Exception):
    pass


class JoinRequestNotFoundError(Exception):
    pass


class AlreadyRequestedError(Exception):
    """The user already has a pending or approved place on the trip."""
    pass


class PermissionDeniedError(Exception):
    pass


class TripService:
    """Business logic for trips and their participants."""

    def __init__(self, db: AsyncSession, relay: Optional[EventRelay] = None):
        self.db = db
        self.relay = relay
        self.messages = MessageService(db, relay)

    # ─── Trips ───────────────────────────────────────────

    async def create_trip(
        self, creator_id: uuid.UUID, title: str, max_participants: int = 2
    ) -> Trip:
        trip = Trip(creator_id=creator_id, title=title, max_participants=max_participants)
        self.db.add(trip)
        await self.db.flush()
        self.db.add(TripParticipant(trip_id=trip.id, user_id=creator_id, status="approved"))
        await self.db.commit()
        logger.info("trip.created", trip_id=str(trip.id), creator_id=str(creator_id))
        return trip

    async def get_trip(self, trip_id: uuid.UUID) -> Trip:
        trip = await self.db.get(Trip, trip_id)
        if trip is None:
            raise TripNotFoundError(f"Trip {trip_id} not found")
        return trip

    async def list_trips(self) -> list[Trip]:
        result = await self.db.execute(select(Trip).order_by(Trip.created_at.desc()))
        return list(result.scalars().all())

    async def list_participants(self, trip_id: uuid.UUID) -> list[TripParticipant]:
        await self.get_trip(trip_id)
        result = await self.db.execute(
            select(TripParticipant)
            .where(TripParticipant.trip_id == trip_id)
            .order_by(TripParticipant.id)
        )
        return list(result.scalars().all())

    # ─── Join requests ───────────────────────────────────

    async def request_join(
        self, trip_id: uuid.UUID, user_id: uuid.UUID, message: str = ""
    ) -> TripParticipant:
        """Ask to join a trip. The creator receives a "request" message."""
        trip = await self.get_trip(trip_id)
        if trip.creator_id == user_id:
            raise AlreadyRequestedError("The creator is already on the trip")

        participant = await self._participant(trip_id, user_id)
        if participant is None:
            participant = TripParticipant(trip_id=trip_id, user_id=user_id, status="pending")
            self.db.add(participant)
        elif participant.status == "rejected":
            participant.status = "pending"
        else:
            raise AlreadyRequestedError(
                f"Join request already {participant.status}"
            )
        await self.db.flush()

        await self.messages.send_message(
            sender_id=user_id,
            receiver_id=trip.creator_id,
            text=message or f"Wants to join: {trip.title}",
            trip_id=trip_id,
            message_type="request",
        )
        return participant

    async def accept_request(
        self, trip_id: uuid.UUID, user_id: uuid.UUID, actor_id: uuid.UUID
    ) -> TripParticipant:
        """Approve a traveller. Only the trip creator may do this."""
        trip, participant = await self._decide(trip_id, user_id, actor_id, "approved")

        chat = await self.messages.find_private_chat(trip.creator_id, user_id)
        if chat is not None:
            await self.messages.post_system_message(
                chat.id,
                "Request accepted",
                color="green",
                trip_id=trip_id,
                actor_id=trip.creator_id,
            )
            await self.messages.mark_read(chat.id, trip.creator_id)

        notify = {trip.creator_id, user_id}
        if trip.max_participants >= PUBLIC_CHAT_MIN_PARTICIPANTS:
            if chat is not None:
                await self.messages.post_system_message(
                    chat.id,
                    f"You can now chat with everyone in the trip chat: {trip.title}",
                    color="yellow",
                    trip_id=trip_id,
                    actor_id=trip.creator_id,
                )
            notify.update(await self._join_public_chat(trip, user_id))

        await self.messages.push_conversations(notify)
        return participant

    async def reject_request(
        self, trip_id: uuid.UUID, user_id: uuid.UUID, actor_id: uuid.UUID
    ) -> TripParticipant:
        trip, participant = await self._decide(trip_id, user_id, actor_id, "rejected")

        chat = await self.messages.find_private_chat(trip.creator_id, user_id)
        if chat is not None:
            await self.messages.post_system_message(
                chat.id,
                "Request rejected",
                color="red",
                trip_id=trip_id,
                actor_id=trip.creator_id,
            )
            await self.messages.mark_read(chat.id, trip.creator_id)

        await self.messages.push_conversations([trip.creator_id, user_id])
        return participant

    async def _decide(
        self,
        trip_id: uuid.UUID,
        user_id: uuid.UUID,
        actor_id: uuid.UUID,
        status: str,
    ) -> tuple[Trip, TripParticipant]:
        trip = await self.get_trip(trip_id)
        if trip.creator_id != actor_id:
            raise PermissionDeniedError("Only the trip creator can answer join requests")

        participant = None
        if user_id != trip.creator_id:
            participant = await self._participant(trip_id, user_id)
        if participant is None or participant.status != "pending":
            raise JoinRequestNotFoundError(
                f"No pending join request from user {user_id} for trip {trip_id}"
            )
        participant.status = status

        # The private chat stays open whatever the answer.
        chat = await self.messages.find_private_chat(trip.creator_id, user_id)
        if chat is not None:
            chat.status = "active"
        await self.db.commit()

        logger.info(
            "trip.request_" + status,
            trip_id=str(trip_id),
            user_id=str(user_id),
        )
        return trip, participant

    async def _participant(
        self, trip_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[TripParticipant]:
        result = await self.db.execute(
            select(TripParticipant).where(
                TripParticipant.trip_id == trip_id,
                TripParticipant.user_id == user_id,
            )
        )
        return result.scalars().first()

    # ─── Trip chat ───────────────────────────────────────

    async def _join_public_chat(self, trip: Trip, user_id: uuid.UUID) -> list[uuid.UUID]:
        """Put every approved traveller in the trip chat; announce the newcomer.

        Returns the chat's participants.
        """
        result = await self.db.execute(
            select(TripParticipant.user_id).where(
                TripParticipant.trip_id == trip.id,
                TripParticipant.status == "approved",
            )
        )
        approved = list(result.scalars().all())

        result = await self.db.execute(
            select(Chat).where(Chat.trip_id == trip.id, Chat.type == "public")
        )
        chat = result.scalars().first()
        created = chat is None
        if created:
            chat = Chat(type="public", status="active", trip_id=trip.id)
            self.db.add(chat)
            await self.db.flush()

        await self.messages.add_participants(chat.id, approved)
        await self.db.commit()

        if created:
            creator = await self.db.get(User, trip.creator_id)
            await self.messages.post_system_message(
                chat.id,
                f"Route creator: {creator.name if creator else 'unknown'}",
                color="yellow",
                trip_id=trip.id,
            )
        newcomer = await self.db.get(User, user_id)
        await self.messages.post_system_message(
            chat.id,
            f"Participant joined: {newcomer.name if newcomer else 'unknown'}",
            color="yellow",
            trip_id=trip.id,
        )
        return approved
