"""Chat API tests — sending, history, read state, conversation buckets,
and the notifications each write pushes to live sockets.
"""

import uuid

import pytest

from wayzer.realtime.registry import Connection

from conftest import auth_headers
from fakes import FakeWebSocket


def _online(app, user) -> FakeWebSocket:
    """Attach a fake live socket for user to the app's registry."""
    ws = FakeWebSocket()
    app.state.registry.register(str(user.id), Connection(ws))
    return ws


async def _dm(client, receiver, text="hello", **extra) -> dict:
    r = await client.post(
        "/api/v1/messages",
        json={"receiverId": str(receiver.id), "text": text, **extra},
    )
    assert r.status_code == 201, r.text
    return r.json()


# ═══════════════════════════════════════════════════════════
# Sending
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_first_message_opens_requested_chat(client, alice, bob):
    msg = await _dm(client, bob, "Hi Bob")

    assert msg["text"] == "Hi Bob"
    assert msg["senderId"] == str(alice.id)
    assert msg["sender"]["name"] == "Alice"
    assert msg["type"] == "general"
    assert "chatId" in msg and "createdAt" in msg

    r = await client.get("/api/v1/conversations", headers=auth_headers(bob))
    requested = r.json()["requested"]
    assert len(requested) == 1
    assert requested[0]["chatId"] == msg["chatId"]
    assert requested[0]["otherUserName"] == "Alice"


@pytest.mark.asyncio
async def test_private_chat_is_reused(client, bob):
    first = await _dm(client, bob, "one")
    second = await _dm(client, bob, "two")
    assert first["chatId"] == second["chatId"]
    assert second["id"] > first["id"]


@pytest.mark.asyncio
async def test_reply_goes_to_same_chat(client, bob):
    first = await _dm(client, bob, "ping")
    r = await client.post(
        "/api/v1/messages",
        json={"chatId": first["chatId"], "text": "pong"},
        headers=auth_headers(bob),
    )
    assert r.status_code == 201
    assert r.json()["chatId"] == first["chatId"]


@pytest.mark.asyncio
async def test_request_message_opens_active_chat(client, bob):
    msg = await _dm(client, bob, "Can I join?", type="request")
    r = await client.get("/api/v1/conversations", headers=auth_headers(bob))
    buckets = r.json()
    assert buckets["requested"] == []
    assert [c["chatId"] for c in buckets["private"]] == [msg["chatId"]]


@pytest.mark.asyncio
async def test_cannot_message_self(client, alice):
    r = await client.post(
        "/api/v1/messages", json={"receiverId": str(alice.id), "text": "me"}
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_unknown_receiver(client):
    r = await client.post(
        "/api/v1/messages", json={"receiverId": str(uuid.uuid4()), "text": "hi"}
    )
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_message_needs_a_target(client):
    r = await client.post("/api/v1/messages", json={"text": "to nobody"})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_empty_text_rejected(client, bob):
    r = await client.post(
        "/api/v1/messages", json={"receiverId": str(bob.id), "text": ""}
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_outsider_cannot_post(client, bob, carol):
    msg = await _dm(client, bob)
    r = await client.post(
        "/api/v1/messages",
        json={"chatId": msg["chatId"], "text": "let me in"},
        headers=auth_headers(carol),
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_requires_authentication(unauthenticated_client):
    r = await unauthenticated_client.get("/api/v1/conversations")
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Live notifications
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_recipient_socket_gets_new_message(app, client, alice, bob):
    alice_ws = _online(app, alice)
    bob_tab1 = _online(app, bob)
    bob_tab2 = _online(app, bob)

    msg = await _dm(client, bob, "are you there?")

    for ws in (bob_tab1, bob_tab2):
        assert ws.frames == [
            {"type": "new_message", "chatId": msg["chatId"], "message": msg}
        ]
    assert alice_ws.sent == []


@pytest.mark.asyncio
async def test_offline_recipient_does_not_fail_send(client, bob):
    msg = await _dm(client, bob, "later")
    assert msg["text"] == "later"


@pytest.mark.asyncio
async def test_dead_socket_is_dropped_and_send_succeeds(app, client, bob):
    ws = FakeWebSocket(fail_send=True)
    conn = Connection(ws)
    app.state.registry.register(str(bob.id), conn)

    await _dm(client, bob)

    assert conn not in app.state.registry


# ═══════════════════════════════════════════════════════════
# History and read state
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_history_oldest_first(client, bob):
    for text in ("one", "two", "three"):
        msg = await _dm(client, bob, text)

    r = await client.get(f"/api/v1/messages/{msg['chatId']}", headers=auth_headers(bob))
    assert r.status_code == 200
    assert [m["text"] for m in r.json()] == ["one", "two", "three"]


@pytest.mark.asyncio
async def test_history_forbidden_for_outsiders(client, bob, carol):
    msg = await _dm(client, bob)
    r = await client.get(f"/api/v1/messages/{msg['chatId']}", headers=auth_headers(carol))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_unread_count_and_reading(client, bob):
    msg = await _dm(client, bob, "one")
    await _dm(client, bob, "two")

    r = await client.get("/api/v1/unread-count", headers=auth_headers(bob))
    assert r.json() == {"unreadCount": 2}

    # Own messages never count as unread
    r = await client.get("/api/v1/unread-count")
    assert r.json() == {"unreadCount": 0}

    await client.get(f"/api/v1/messages/{msg['chatId']}", headers=auth_headers(bob))
    r = await client.get("/api/v1/unread-count", headers=auth_headers(bob))
    assert r.json() == {"unreadCount": 0}


@pytest.mark.asyncio
async def test_mark_read_pushes_unread_count(app, client, bob):
    msg = await _dm(client, bob, "one")
    bob_ws = _online(app, bob)

    r = await client.post(
        "/api/v1/mark-read",
        params={"chatId": msg["chatId"]},
        headers=auth_headers(bob),
    )
    assert r.status_code == 204
    assert bob_ws.frames == [{"type": "unread_count", "unreadCount": 0}]


@pytest.mark.asyncio
async def test_conversation_summary(client, bob, carol):
    with_bob = await _dm(client, bob, "to bob")
    with_carol = await _dm(client, carol, "to carol")

    r = await client.post(
        "/api/v1/messages",
        json={"chatId": with_bob["chatId"], "text": "bob replies"},
        headers=auth_headers(bob),
    )
    assert r.status_code == 201

    buckets = (await client.get("/api/v1/conversations")).json()
    convs = buckets["requested"]
    # Most recent activity first
    assert [c["chatId"] for c in convs] == [with_bob["chatId"], with_carol["chatId"]]
    assert convs[0]["lastMessage"]["text"] == "bob replies"
    assert convs[0]["unreadCount"] == 1
    assert convs[0]["otherUserName"] == "Bob"
    assert convs[1]["unreadCount"] == 0
