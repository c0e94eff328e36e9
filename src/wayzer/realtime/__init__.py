"""Real-time chat notifications over WebSocket.

Events flow one way, from the persistence layer to browsers:
1. MessageService commits a chat message → EventRelay.on_message_created
2. EventRelay works out the recipients → ConnectionRegistry.send_to_user
3. Every live socket of each recipient gets a "new_message" frame

Delivery is best-effort: a recipient with no open socket simply sees the
message on its next REST fetch of conversations.
"""
