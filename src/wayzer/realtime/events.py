"""Wire frame types and builders.

Centralizing frame types as constants prevents typos between the server
and the Python client, which both speak this protocol.

Client → Server:  {"type": "auth", "token": "<bearer>"}   (first frame only)
                  {"type": "ping"}
Server → Client:  {"type": "auth_ok", "userId": "..."}
                  {"type": "new_message", "chatId": "...", "message": {...}}
                  {"type": "conversations_update", "conversations": {...}}
                  {"type": "unread_count", "unreadCount": 3}
                  {"type": "forced_logout", "reason": "..."}
                  {"type": "pong"}
"""

from typing import Any, Optional

AUTH = "auth"
AUTH_OK = "auth_ok"
PING = "ping"
PONG = "pong"
NEW_MESSAGE = "new_message"
CONVERSATIONS_UPDATE = "conversations_update"
UNREAD_COUNT = "unread_count"
FORCED_LOGOUT = "forced_logout"

# ─── Close codes (4000-4999 is the application range) ────

CLOSE_AUTH_FAILED = 4001
CLOSE_AUTH_MALFORMED = 4002
CLOSE_FORCED_LOGOUT = 4003
CLOSE_AUTH_TIMEOUT = 4008

CLOSE_REASONS = {
    CLOSE_AUTH_FAILED: "Invalid or expired token",
    CLOSE_AUTH_MALFORMED: "Expected an auth frame",
    CLOSE_FORCED_LOGOUT: "Session terminated",
    CLOSE_AUTH_TIMEOUT: "Authentication timeout",
}


def new_message_frame(chat_id: str, message: dict[str, Any]) -> dict[str, Any]:
    return {"type": NEW_MESSAGE, "chatId": chat_id, "message": message}


def forced_logout_frame(reason: Optional[str] = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": FORCED_LOGOUT}
    if reason:
        frame["reason"] = reason
    return frame


def conversations_frame(buckets: dict[str, Any]) -> dict[str, Any]:
    return {"type": CONVERSATIONS_UPDATE, "conversations": buckets}


def unread_count_frame(count: int) -> dict[str, Any]:
    return {"type": UNREAD_COUNT, "unreadCount": count}
