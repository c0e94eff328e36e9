"""Python client for the chat notification socket.

Mirrors what the browser does: keep one live socket tied to the stored
credential, authenticate on open, turn inbound frames into callbacks,
and react to a forced logout by dropping the credential.

Reconnects use exponential backoff with a cap. The client gives up
instead of reconnecting when the server rejected the token (close codes
4001/4002) or terminated the session (4003).

Usage:
    client = ChatSocketClient("ws://localhost:5000/ws", CredentialStore(path),
                              on_new_message=lambda chat_id, msg: ...)
    await client.run()
"""

import asyncio
import inspect
import json
import os
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import structlog
import websockets

from wayzer.realtime import events

logger = structlog.get_logger()

INCOMING_MESSAGE = "incoming-message"

# Close codes after which reconnecting cannot succeed
TERMINAL_CLOSE_CODES = {
    events.CLOSE_AUTH_FAILED,
    events.CLOSE_AUTH_MALFORMED,
    events.CLOSE_FORCED_LOGOUT,
}


class CredentialStore:
    """Access token persisted in a small JSON file (mode 0600)."""

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()

    def load(self) -> Optional[str]:
        try:
            data = json.loads(self.path.read_text())
        except (FileNotFoundError, ValueError):
            return None
        token = data.get("access_token") if isinstance(data, dict) else None
        return token or None

    def save(self, access_token: str, **extra: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"access_token": access_token, **extra}))
        os.chmod(self.path, 0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


@dataclass
class ReconnectPolicy:
    """Exponential backoff: initial_delay * factor**n, capped at max_delay."""

    initial_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.0  # fraction of the delay, e.g. 0.1 = ±10%
    attempts: int = field(default=0, init=False)

    def next_delay(self) -> float:
        delay = min(self.max_delay, self.initial_delay * (self.factor ** self.attempts))
        self.attempts += 1
        if self.jitter:
            delay += delay * random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)

    def reset(self) -> None:
        self.attempts = 0


Callback = Callable[..., Any]


class ChatSocketClient:
    """One authenticated notification socket with reconnects."""

    def __init__(
        self,
        url: str,
        credentials: CredentialStore,
        on_new_message: Optional[Callback] = None,
        on_any_message: Optional[Callback] = None,
        on_logout: Optional[Callback] = None,
        policy: Optional[ReconnectPolicy] = None,
        connect: Optional[Callable[[str], Any]] = None,
    ):
        self.url = url
        self.credentials = credentials
        self.on_new_message = on_new_message
        self.on_any_message = on_any_message
        self.on_logout = on_logout
        self.policy = policy or ReconnectPolicy()
        self._connect = connect or websockets.connect
        self._listeners: list[Callback] = []
        self._ws = None
        self._stopped = False
        self._token_changed = False
        self.user_id: Optional[str] = None
        self.last_close_code: Optional[int] = None

    # ─── Same-process event listeners ────────────────────

    def add_listener(self, callback: Callback) -> None:
        """Subscribe to every inbound event frame (the "incoming-message" event)."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ─── Lifecycle ───────────────────────────────────────

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def run(self) -> None:
        """Keep a socket open until closed, logged out, or rejected."""
        self._stopped = False
        while not self._stopped:
            token = self.credentials.load()
            if not token:
                logger.info("client.no_credentials")
                return

            self._token_changed = False
            self.last_close_code = await self._session(token)

            if self._stopped:
                break
            if self.last_close_code in TERMINAL_CLOSE_CODES:
                logger.info("client.rejected", close_code=self.last_close_code)
                break
            if self._token_changed:
                self.policy.reset()
                continue

            delay = self.policy.next_delay()
            logger.info("client.reconnecting", delay=round(delay, 2), attempt=self.policy.attempts)
            await asyncio.sleep(delay)

    async def _session(self, token: str) -> Optional[int]:
        """One connection attempt. Returns the close code, if any."""
        ws = None
        try:
            async with self._connect(self.url) as ws:
                self._ws = ws
                await ws.send(json.dumps({"type": events.AUTH, "token": token}))
                async for raw in ws:
                    await self._dispatch(raw)
                    if self._stopped:
                        break
        except websockets.ConnectionClosed:
            pass
        except (OSError, asyncio.TimeoutError, websockets.InvalidHandshake) as e:
            logger.warning("client.connect_failed", url=self.url, error=str(e) or type(e).__name__)
        finally:
            self._ws = None
        return getattr(ws, "close_code", None) if ws is not None else None

    async def set_token(self, access_token: str) -> None:
        """Credential changed: store it and reconnect with the new token."""
        self.credentials.save(access_token)
        self._token_changed = True
        if self._ws is not None:
            await self._ws.close()

    async def close(self) -> None:
        """Stop for good; frames still in flight are discarded."""
        self._stopped = True
        if self._ws is not None:
            await self._ws.close()

    # ─── Inbound frames ──────────────────────────────────

    async def _dispatch(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("client.malformed_frame")
            return
        if not isinstance(frame, dict):
            logger.warning("client.malformed_frame")
            return

        frame_type = frame.get("type")
        if frame_type == events.AUTH_OK:
            self.user_id = frame.get("userId")
            self.policy.reset()
            return
        if frame_type == events.PONG:
            return

        if frame_type == events.FORCED_LOGOUT:
            self._stopped = True
            self.credentials.clear()
            logger.info("client.forced_logout", reason=frame.get("reason"))
            await self._invoke("on_logout", self.on_logout, frame)
            await self._emit(frame)
            return

        if frame_type == events.NEW_MESSAGE:
            message = frame.get("message")
            if not isinstance(message, dict):
                logger.warning("client.malformed_frame", frame_type=frame_type)
                return
            chat_id = frame.get("chatId") or message.get("chatId") or message.get("tripId") or ""
            await self._invoke("on_any_message", self.on_any_message, frame)
            await self._invoke("on_new_message", self.on_new_message, chat_id, message)
            await self._emit(frame)
            return

        await self._invoke("on_any_message", self.on_any_message, frame)
        await self._emit(frame)

    async def _invoke(self, name: str, callback: Optional[Callback], *args: Any) -> None:
        try:
            await _call(callback, *args)
        except Exception as e:
            logger.error("client.callback_failed", callback=name, error=str(e))

    async def _emit(self, frame: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                await _call(listener, frame)
            except Exception as e:
                logger.error(INCOMING_MESSAGE + ".listener_failed", error=str(e))


async def _call(callback: Optional[Callback], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
