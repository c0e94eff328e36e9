#!/usr/bin/env python3
"""
Trip join flow with live notifications.

Alice creates a three-seat trip while listening on the WebSocket. Bob
asks to join; Alice's socket receives the request message. She accepts,
which posts a green system message, opens the public trip chat and
refreshes both inboxes.

Run with: python examples/trip_join_flow.py
Backend must be running: http://localhost:5000
"""

import asyncio
import json
import tempfile
from pathlib import Path

from _common import WS_URL, check_backend, signup

from wayzer.realtime.client import ChatSocketClient, CredentialStore, ReconnectPolicy


async def main():
    check_backend()
    print("\n1. Creating users...")
    alice = signup("Alice")
    bob = signup("Bob")

    store = CredentialStore(Path(tempfile.mkdtemp()) / "alice.json")
    store.save(alice["token"])

    def on_frame(frame: dict):
        if frame["type"] == "new_message":
            msg = frame["message"]
            sender = (msg.get("sender") or {}).get("name", "system")
            print(f"   [socket] {sender} ({msg['type']}): {msg['text']}")
        else:
            print(f"   [socket] {frame['type']}: {json.dumps(frame)[:80]}...")

    socket = ChatSocketClient(WS_URL, store, policy=ReconnectPolicy(max_delay=5.0))
    socket.add_listener(on_frame)
    listener = asyncio.create_task(socket.run())
    await asyncio.sleep(0.5)

    print("\n2. Alice creates a trip...")
    resp = alice["client"].post("/trips", json={"title": "Dolomites hike", "max_participants": 3})
    assert resp.status_code == 201, resp.text
    trip = resp.json()
    print(f"   Trip: {trip['title']} ({trip['id'][:8]}...)")

    print("\n3. Bob asks to join...")
    resp = bob["client"].post(f"/trips/{trip['id']}/join", json={"message": "Can I tag along?"})
    assert resp.status_code == 201, resp.text
    await asyncio.sleep(0.5)

    print("\n4. Alice accepts...")
    resp = alice["client"].post(f"/trips/{trip['id']}/requests/{bob['id']}/accept")
    assert resp.status_code == 200, resp.text
    await asyncio.sleep(0.5)

    print("\n5. Bob's inbox:")
    buckets = bob["client"].get("/conversations").json()
    for name, convs in buckets.items():
        for conv in convs:
            title = conv.get("tripTitle") or conv.get("otherUserName")
            print(f"   {name:9s} {title}: {conv['lastMessage']['text']!r} ({conv['unreadCount']} unread)")

    await socket.close()
    await listener
    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(main())
