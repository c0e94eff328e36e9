"""Wayzer — group trip planning with real-time chat.

The backend serves trip join requests, chats between travellers, and
pushes chat notifications to connected clients over a WebSocket.
"""

__version__ = "0.1.0"
