"""Connection registry — who is online, and on which sockets.

A user may have several live connections (tabs, devices), so the registry
maps user id → set of connections. Delivery is fan-out: every connection
of the user gets every payload.

The registry is a plain in-memory structure mutated only from the event
loop, so it needs no locks. It is process-local: a user connected to
another instance is invisible here (see realtime.pubsub for the
cross-instance bridge).
"""

import asyncio
import enum
import json
import time
import uuid
from typing import Any, Iterator, Optional

import structlog
from starlette.websockets import WebSocketDisconnect

logger = structlog.get_logger()


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    AWAITING_AUTH = "awaiting_auth"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


class Connection:
    """One live WebSocket plus the identity it authenticated as.

    user_id stays None until the handshake completes; once set it never
    changes (a connection is never downgraded back to anonymous).
    """

    def __init__(self, websocket, connection_id: Optional[str] = None):
        self.websocket = websocket
        self.id = connection_id or uuid.uuid4().hex[:12]
        self.user_id: Optional[str] = None
        self.state = ConnectionState.CONNECTING
        self.opened_at = time.monotonic()
        self.last_activity = self.opened_at

    @property
    def is_authenticated(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    async def receive_text(self) -> Optional[str]:
        """Next inbound frame as text, or None if the client sent bytes.

        Raises WebSocketDisconnect once the client goes away.
        """
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(
                code=message.get("code", 1000), reason=message.get("reason")
            )
        self.touch()
        return message.get("text")

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)
        self.touch()

    async def send_json(self, payload: dict[str, Any]) -> None:
        await self.send_text(json.dumps(payload, default=str))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self.websocket.close(code=code, reason=reason)

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id} state={self.state.value}>"


class ConnectionRegistry:
    """Authenticated connections keyed by user id.

    Constructed once per application (create_app) and handed to the
    handshake and the relay; there is no module-level instance.
    """

    def __init__(self):
        self._by_user: dict[str, set[Connection]] = {}
        self._owners: dict[Connection, str] = {}

    # ─── Membership ──────────────────────────────────────

    def register(self, user_id: str, connection: Connection) -> None:
        """Add a connection under user_id. Idempotent per connection."""
        user_id = str(user_id)
        owner = self._owners.get(connection)
        if owner == user_id:
            return
        if owner is not None:
            raise ValueError(
                f"Connection {connection.id} is already registered to user {owner}"
            )
        self._by_user.setdefault(user_id, set()).add(connection)
        self._owners[connection] = user_id
        logger.info(
            "ws.registered",
            user_id=user_id,
            connection_id=connection.id,
            user_connections=len(self._by_user[user_id]),
        )

    def unregister(self, connection: Connection) -> Optional[str]:
        """Remove a connection from its bucket. Safe to call repeatedly.

        Returns the user id it was registered under, or None.
        """
        user_id = self._owners.pop(connection, None)
        if user_id is None:
            return None
        bucket = self._by_user.get(user_id)
        if bucket is not None:
            bucket.discard(connection)
            if not bucket:
                del self._by_user[user_id]
        logger.info("ws.unregistered", user_id=user_id, connection_id=connection.id)
        return user_id

    # ─── Lookup ──────────────────────────────────────────

    def connections_for(self, user_id: str) -> list[Connection]:
        return list(self._by_user.get(str(user_id), ()))

    def is_online(self, user_id: str) -> bool:
        return str(user_id) in self._by_user

    def online_users(self) -> list[str]:
        return list(self._by_user)

    @property
    def connection_count(self) -> int:
        return len(self._owners)

    def __len__(self) -> int:
        return len(self._by_user)

    def __contains__(self, connection: object) -> bool:
        return connection in self._owners

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._owners))

    # ─── Delivery ────────────────────────────────────────

    async def send_to_user(self, user_id: str, payload: dict[str, Any]) -> int:
        """Write payload to every live connection of user_id.

        At-most-once, best-effort: no queue, no retry. A user with no live
        connection is a silent no-op. A failed write unregisters that
        connection; nothing propagates to the caller.

        Returns the number of connections the frame was written to.
        """
        connections = self.connections_for(user_id)
        if not connections:
            return 0

        data = json.dumps(payload, default=str)
        results = await asyncio.gather(
            *(self._write(conn, data) for conn in connections)
        )
        return sum(results)

    async def _write(self, connection: Connection, data: str) -> bool:
        try:
            await connection.send_text(data)
            return True
        except Exception as e:
            # A dead socket is an implicit disconnect.
            logger.warning(
                "ws.send_failed",
                user_id=connection.user_id,
                connection_id=connection.id,
                error=str(e) or type(e).__name__,
            )
            self.unregister(connection)
            return False

    async def disconnect_user(self, user_id: str, code: int = 1000, reason: str = "") -> int:
        """Close and unregister every connection of a user."""
        connections = self.connections_for(user_id)
        for conn in connections:
            self.unregister(conn)
            try:
                await conn.close(code=code, reason=reason)
            except Exception as e:
                logger.debug("ws.close_failed", connection_id=conn.id, error=str(e))
        return len(connections)
