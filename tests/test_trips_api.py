"""Trip join-request tests — request messages, accept/reject system
messages, the public trip chat, and the socket notifications they cause.
"""

import uuid

import pytest

from wayzer.realtime.registry import Connection

from conftest import auth_headers
from fakes import FakeWebSocket


def _online(app, user) -> FakeWebSocket:
    ws = FakeWebSocket()
    app.state.registry.register(str(user.id), Connection(ws))
    return ws


async def _trip(client, title="Alps road trip", max_participants=2) -> dict:
    r = await client.post(
        "/api/v1/trips", json={"title": title, "max_participants": max_participants}
    )
    assert r.status_code == 201, r.text
    return r.json()


async def _join(client, trip, user, message="Can I come along?"):
    return await client.post(
        f"/api/v1/trips/{trip['id']}/join",
        json={"message": message},
        headers=auth_headers(user),
    )


async def _history(client, chat_id, user) -> list[dict]:
    r = await client.get(f"/api/v1/messages/{chat_id}", headers=auth_headers(user))
    assert r.status_code == 200
    return r.json()


async def _private_chat_id(client, user) -> str:
    buckets = (await client.get("/api/v1/conversations", headers=auth_headers(user))).json()
    return buckets["private"][0]["chatId"]


# ═══════════════════════════════════════════════════════════
# Trips
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_trip_adds_creator(client, alice):
    trip = await _trip(client)
    assert trip["creator_id"] == str(alice.id)

    r = await client.get(f"/api/v1/trips/{trip['id']}/participants")
    assert r.json() == [
        {"trip_id": trip["id"], "user_id": str(alice.id), "status": "approved"}
    ]


@pytest.mark.asyncio
async def test_trip_needs_two_seats(client):
    r = await client.post("/api/v1/trips", json={"title": "Solo", "max_participants": 1})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_unknown_trip(client):
    r = await client.get(f"/api/v1/trips/{uuid.uuid4()}")
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# Join requests
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_join_request_messages_creator(app, client, alice, bob):
    trip = await _trip(client)
    alice_ws = _online(app, alice)

    r = await _join(client, trip, bob, "Room for one more?")
    assert r.status_code == 201
    assert r.json()["status"] == "pending"

    [frame] = alice_ws.frames
    assert frame["type"] == "new_message"
    assert frame["message"]["type"] == "request"
    assert frame["message"]["text"] == "Room for one more?"
    assert frame["message"]["tripId"] == trip["id"]

    buckets = (await client.get("/api/v1/conversations")).json()
    assert buckets["private"][0]["otherUserName"] == "Bob"
    assert buckets["private"][0]["chatStatus"] == "active"


@pytest.mark.asyncio
async def test_join_request_default_text(client, bob):
    trip = await _trip(client, title="Lisbon weekend")
    await _join(client, trip, bob, message="")

    chat_id = await _private_chat_id(client, bob)
    [msg] = await _history(client, chat_id, bob)
    assert msg["text"] == "Wants to join: Lisbon weekend"


@pytest.mark.asyncio
async def test_duplicate_join_request(client, bob):
    trip = await _trip(client)
    assert (await _join(client, trip, bob)).status_code == 201
    assert (await _join(client, trip, bob)).status_code == 409


@pytest.mark.asyncio
async def test_creator_cannot_join_own_trip(client, alice):
    trip = await _trip(client)
    assert (await _join(client, trip, alice)).status_code == 409


@pytest.mark.asyncio
async def test_join_unknown_trip(client, bob):
    r = await _join(client, {"id": str(uuid.uuid4())}, bob)
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# Accept / reject
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_only_creator_can_accept(client, bob, carol):
    trip = await _trip(client)
    await _join(client, trip, bob)

    r = await client.post(
        f"/api/v1/trips/{trip['id']}/requests/{bob.id}/accept",
        headers=auth_headers(carol),
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_accept_without_request(client, carol):
    trip = await _trip(client)
    r = await client.post(f"/api/v1/trips/{trip['id']}/requests/{carol.id}/accept")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_accept_posts_green_message(app, client, alice, bob):
    trip = await _trip(client)
    await _join(client, trip, bob)
    bob_ws = _online(app, bob)

    r = await client.post(f"/api/v1/trips/{trip['id']}/requests/{bob.id}/accept")
    assert r.status_code == 200
    assert r.json()["status"] == "approved"

    types = [f["type"] for f in bob_ws.frames]
    assert types == ["new_message", "conversations_update"]
    system = bob_ws.frames[0]["message"]
    assert system["type"] == "green"
    assert system["text"] == "Request accepted"
    assert system["senderId"] is None

    # The creator's copy is already read
    r = await client.get("/api/v1/unread-count")
    assert r.json()["unreadCount"] == 0

    # Two seats: no trip chat
    buckets = bob_ws.frames[1]["conversations"]
    assert buckets["public"] == []


@pytest.mark.asyncio
async def test_acceptance_is_not_echoed_to_creator(app, client, alice, bob):
    trip = await _trip(client)
    await _join(client, trip, bob)
    alice_ws = _online(app, alice)

    await client.post(f"/api/v1/trips/{trip['id']}/requests/{bob.id}/accept")

    assert [f["type"] for f in alice_ws.frames] == ["conversations_update"]


@pytest.mark.asyncio
async def test_creator_cannot_decide_own_place(app, client, alice, bob):
    trip = await _trip(client)
    r = await client.post(
        "/api/v1/messages",
        json={"text": "hi", "receiverId": str(alice.id)},
        headers=auth_headers(bob),
    )
    assert r.status_code == 201
    dm_id = r.json()["chatId"]
    bob_ws = _online(app, bob)

    for action in ("accept", "reject"):
        r = await client.post(f"/api/v1/trips/{trip['id']}/requests/{alice.id}/{action}")
        assert r.status_code == 404

    assert bob_ws.frames == []
    history = await _history(client, dm_id, bob)
    assert [m["text"] for m in history] == ["hi"]


@pytest.mark.asyncio
async def test_decided_request_cannot_be_decided_again(client, bob):
    trip = await _trip(client)
    await _join(client, trip, bob)
    r = await client.post(f"/api/v1/trips/{trip['id']}/requests/{bob.id}/accept")
    assert r.status_code == 200

    r = await client.post(f"/api/v1/trips/{trip['id']}/requests/{bob.id}/accept")
    assert r.status_code == 404
    r = await client.post(f"/api/v1/trips/{trip['id']}/requests/{bob.id}/reject")
    assert r.status_code == 404

    chat_id = await _private_chat_id(client, bob)
    history = await _history(client, chat_id, bob)
    assert [m["type"] for m in history].count("green") == 1
    assert "red" not in [m["type"] for m in history]


@pytest.mark.asyncio
async def test_reject_posts_red_message(client, bob):
    trip = await _trip(client)
    await _join(client, trip, bob)

    r = await client.post(f"/api/v1/trips/{trip['id']}/requests/{bob.id}/reject")
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"

    chat_id = await _private_chat_id(client, bob)
    history = await _history(client, chat_id, bob)
    assert [(m["type"], m["text"]) for m in history][-1] == ("red", "Request rejected")


@pytest.mark.asyncio
async def test_rejected_user_can_ask_again(client, bob):
    trip = await _trip(client)
    await _join(client, trip, bob)
    await client.post(f"/api/v1/trips/{trip['id']}/requests/{bob.id}/reject")

    r = await _join(client, trip, bob, "Second try")
    assert r.status_code == 201
    assert r.json()["status"] == "pending"


# ═══════════════════════════════════════════════════════════
# Public trip chat
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_group_trip_opens_public_chat(app, client, alice, bob, carol):
    trip = await _trip(client, title="Balkans", max_participants=4)
    await _join(client, trip, bob)
    await _join(client, trip, carol)

    await client.post(f"/api/v1/trips/{trip['id']}/requests/{bob.id}/accept")

    bob_buckets = (await client.get("/api/v1/conversations", headers=auth_headers(bob))).json()
    [public] = bob_buckets["public"]
    assert public["tripTitle"] == "Balkans"
    history = await _history(client, public["chatId"], bob)
    assert [(m["type"], m["text"]) for m in history] == [
        ("yellow", "Route creator: Alice"),
        ("yellow", "Participant joined: Bob"),
    ]

    # The private chat points to the trip chat
    private = await _history(client, bob_buckets["private"][0]["chatId"], bob)
    assert private[-1]["type"] == "yellow"

    bob_ws = _online(app, bob)
    await client.post(f"/api/v1/trips/{trip['id']}/requests/{carol.id}/accept")

    announced = [
        f["message"]["text"] for f in bob_ws.frames if f["type"] == "new_message"
    ]
    assert "Participant joined: Carol" in announced
    assert any(f["type"] == "conversations_update" for f in bob_ws.frames)

    carol_buckets = (await client.get("/api/v1/conversations", headers=auth_headers(carol))).json()
    assert [c["chatId"] for c in carol_buckets["public"]] == [public["chatId"]]

    # Alice, Bob and Carol are all members now
    r = await client.post(
        "/api/v1/messages",
        json={"chatId": public["chatId"], "text": "Hello everyone"},
        headers=auth_headers(carol),
    )
    assert r.status_code == 201
