"""Auth handshake — the first frame of every realtime connection.

The browser cannot set an Authorization header on a WebSocket, so the
token travels in the first frame instead:

    connecting → awaiting_auth → authenticated   (registered, receives events)
                              ↘ rejected        (socket closed, never registered)

A connection that never sends its auth frame is closed after
`timeout` seconds, so idle anonymous sockets cannot pile up.
"""

import asyncio
import inspect
import json
import uuid
from typing import Awaitable, Callable, Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketDisconnect

from wayzer.auth.jwt import TokenError, verify_token as decode_access_token
from wayzer.config import settings
from wayzer.db.models import User
from wayzer.realtime import events
from wayzer.realtime.registry import Connection, ConnectionRegistry, ConnectionState

logger = structlog.get_logger()

TokenVerifier = Callable[[str], Union[str, Awaitable[str]]]


class HandshakeError(Exception):
    """Handshake failed; the socket is closed with close_code."""

    def __init__(self, close_code: int, detail: str = ""):
        self.close_code = close_code
        self.detail = detail or events.CLOSE_REASONS.get(close_code, "")
        super().__init__(self.detail)


class DatabaseTokenVerifier:
    """Resolve an access token to the id of an active user.

    Signature and expiry are checked by the JWT layer; the user lookup
    rejects tokens that outlived their account (deleted or blocked).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def __call__(self, token: str) -> str:
        payload = decode_access_token(token)
        try:
            user_id = uuid.UUID(payload["sub"])
        except ValueError:
            raise TokenError("Token subject is not a user id")

        async with self.session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise TokenError("Unknown user")
        if user.status != "active":
            raise TokenError("Account blocked")
        return str(user.id)


class AuthHandshake:
    """Drives one connection through the auth state machine."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        verify_token: TokenVerifier,
        timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.verify_token = verify_token
        self.timeout = settings.ws_auth_timeout_seconds if timeout is None else timeout

    async def authenticate(self, connection: Connection) -> Optional[str]:
        """Run the handshake. Returns the user id, or None if rejected.

        On success the connection is registered and acknowledged with an
        auth_ok frame. On failure it is closed with a distinguishable
        close code and never touches the registry.
        """
        connection.state = ConnectionState.AWAITING_AUTH
        try:
            raw = await asyncio.wait_for(
                connection.receive_text(), timeout=self.timeout
            )
            token = self._parse_auth_frame(raw)
            user_id = await self._verify(token)
        except WebSocketDisconnect:
            connection.state = ConnectionState.REJECTED
            logger.info("ws.disconnected_before_auth", connection_id=connection.id)
            return None
        except asyncio.TimeoutError:
            await self._reject(connection, HandshakeError(events.CLOSE_AUTH_TIMEOUT))
            return None
        except HandshakeError as e:
            await self._reject(connection, e)
            return None

        connection.user_id = user_id
        connection.state = ConnectionState.AUTHENTICATED
        self.registry.register(user_id, connection)
        try:
            await connection.send_json({"type": events.AUTH_OK, "userId": user_id})
        except Exception as e:
            logger.warning("ws.ack_failed", connection_id=connection.id, error=str(e))
            self.registry.unregister(connection)
            return None
        return user_id

    def _parse_auth_frame(self, raw: Optional[str]) -> str:
        if raw is None:
            raise HandshakeError(events.CLOSE_AUTH_MALFORMED, "Auth frame is binary")
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            raise HandshakeError(events.CLOSE_AUTH_MALFORMED, "Auth frame is not JSON")
        if not isinstance(frame, dict) or frame.get("type") != events.AUTH:
            raise HandshakeError(events.CLOSE_AUTH_MALFORMED)
        token = frame.get("token")
        if not isinstance(token, str) or not token:
            raise HandshakeError(events.CLOSE_AUTH_MALFORMED, "Auth frame has no token")
        return token

    async def _verify(self, token: str) -> str:
        try:
            result = self.verify_token(token)
            if inspect.isawaitable(result):
                result = await result
        except TokenError as e:
            raise HandshakeError(events.CLOSE_AUTH_FAILED, str(e))
        if not result:
            raise HandshakeError(events.CLOSE_AUTH_FAILED)
        return str(result)

    async def _reject(self, connection: Connection, error: HandshakeError) -> None:
        connection.state = ConnectionState.REJECTED
        logger.info(
            "ws.auth_failed",
            connection_id=connection.id,
            close_code=error.close_code,
            reason=error.detail,
        )
        try:
            await connection.close(
                code=error.close_code,
                reason=events.CLOSE_REASONS.get(error.close_code, ""),
            )
        except Exception as e:
            logger.debug("ws.close_failed", connection_id=connection.id, error=str(e))
