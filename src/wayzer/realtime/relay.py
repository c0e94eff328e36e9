"""Event relay — bridges "a chat message was stored" to live sockets.

The relay never creates or stores messages. MessageService calls
on_message_created after its insert is committed, handing over the
serialized message and the chat's participants; the relay picks the
recipients and pushes a new_message frame to each of them.

Guarantees are deliberately thin: no ordering across recipients, no
deduplication, no retry. Clients treat every frame as "invalidate and
refetch", so a duplicate is harmless and a dropped frame is repaired by
the next REST fetch.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import structlog

from wayzer.realtime import events
from wayzer.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


@dataclass
class MessageCreated:
    """A chat message that was just committed.

    participant_ids holds every member of the chat: sender and receiver
    for a private chat, every accepted traveller for a trip chat.
    sender_id is None for system messages.
    """

    chat_id: str
    message: dict[str, Any]
    sender_id: Optional[str] = None
    participant_ids: list[str] = field(default_factory=list)


def recipients_for(event: MessageCreated) -> list[str]:
    """Participants minus the sender, deduplicated, order preserved."""
    sender = str(event.sender_id) if event.sender_id is not None else None
    seen: set[str] = set()
    recipients = []
    for pid in event.participant_ids:
        pid = str(pid)
        if pid == sender or pid in seen:
            continue
        seen.add(pid)
        recipients.append(pid)
    return recipients


class EventRelay:
    """Pushes notification frames to users' live connections."""

    def __init__(self, registry: ConnectionRegistry, fanout=None):
        self.registry = registry
        # Optional realtime.pubsub.RedisFanout; None = process-local delivery
        self.fanout = fanout

    async def deliver(self, user_id: str, payload: dict[str, Any]) -> int:
        """Send a frame to one user, through Redis when fan-out is enabled.

        Returns the number of local connections written to (0 when the
        frame was handed to Redis; the subscriber delivers it).
        """
        if self.fanout is not None:
            try:
                await self.fanout.publish(str(user_id), payload)
                return 0
            except Exception as e:
                logger.warning("relay.fanout_failed", user_id=str(user_id), error=str(e))
        return await self.registry.send_to_user(str(user_id), payload)

    async def on_message_created(self, event: MessageCreated) -> int:
        """Notify every recipient of a new chat message."""
        frame = events.new_message_frame(str(event.chat_id), event.message)
        delivered = 0
        recipients = recipients_for(event)
        for user_id in recipients:
            delivered += await self.deliver(user_id, frame)
        logger.debug(
            "relay.new_message",
            chat_id=str(event.chat_id),
            recipients=len(recipients),
            delivered=delivered,
        )
        return delivered

    async def broadcast(self, user_ids: Iterable[str], payload: dict[str, Any]) -> int:
        delivered = 0
        for user_id in user_ids:
            delivered += await self.deliver(user_id, payload)
        return delivered

    async def notify_conversations(self, user_id: str, buckets: dict[str, Any]) -> int:
        return await self.deliver(user_id, events.conversations_frame(buckets))

    async def notify_unread_count(self, user_id: str, count: int) -> int:
        return await self.deliver(user_id, events.unread_count_frame(count))

    async def force_logout(self, user_id: str, reason: Optional[str] = None) -> int:
        """Tell every client of a user to drop its credential, then hang up.

        Administrative override (e.g. the account was blocked). Local
        sockets get the frame directly so it is written before they are
        closed; other instances do the same when the frame reaches them
        through the fan-out.
        """
        user_id = str(user_id)
        frame = events.forced_logout_frame(reason)
        if self.fanout is not None:
            try:
                await self.fanout.publish(user_id, frame)
            except Exception as e:
                logger.warning("relay.fanout_failed", user_id=user_id, error=str(e))
        closed = await self._logout_local(user_id, frame)
        logger.info("relay.forced_logout", user_id=user_id, connections=closed)
        return closed

    async def receive_remote(self, user_id: str, payload: dict[str, Any]) -> int:
        """Deliver a frame published through the fan-out by any instance."""
        if payload.get("type") == events.FORCED_LOGOUT:
            return await self._logout_local(user_id, payload)
        return await self.registry.send_to_user(user_id, payload)

    async def _logout_local(self, user_id: str, frame: dict[str, Any]) -> int:
        await self.registry.send_to_user(user_id, frame)
        return await self.registry.disconnect_user(
            user_id,
            code=events.CLOSE_FORCED_LOGOUT,
            reason=events.CLOSE_REASONS[events.CLOSE_FORCED_LOGOUT],
        )
