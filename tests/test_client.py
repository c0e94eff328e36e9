"""Python socket client tests — auth on open, callbacks, reconnects, logout.

The network is replaced by a scripted connect() so every test is
deterministic and instant.
"""

import json

import pytest

from wayzer.realtime import events
from wayzer.realtime.client import ChatSocketClient, CredentialStore, ReconnectPolicy


class ScriptedSocket:
    """Plays a fixed list of server frames, then ends with close_code."""

    def __init__(self, frames, close_code=1000):
        self.frames = [json.dumps(f) if isinstance(f, dict) else f for f in frames]
        self.close_code = close_code
        self.sent: list[dict] = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.frames:
            yield frame

    async def close(self) -> None:
        self.closed = True


def _connector(*sockets):
    queue = list(sockets)
    calls = []

    def connect(url):
        calls.append(url)
        return queue.pop(0)

    connect.calls = calls
    return connect


@pytest.fixture()
def store(tmp_path):
    store = CredentialStore(tmp_path / "credentials.json")
    store.save("token-1")
    return store


def _fast_policy() -> ReconnectPolicy:
    return ReconnectPolicy(initial_delay=0.0, max_delay=0.0)


# ═══════════════════════════════════════════════════════════
# Session
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_sends_auth_frame_first(store):
    sock = ScriptedSocket([{"type": "auth_ok", "userId": "u1"}], close_code=events.CLOSE_FORCED_LOGOUT)
    client = ChatSocketClient("ws://test/ws", store, connect=_connector(sock))

    await client.run()

    assert sock.sent[0] == {"type": "auth", "token": "token-1"}
    assert client.user_id == "u1"


@pytest.mark.asyncio
async def test_new_message_callbacks_and_listeners(store):
    message = {"id": 7, "chatId": "chat-1", "text": "hi"}
    frame = {"type": "new_message", "chatId": "chat-1", "message": message}
    sock = ScriptedSocket([frame], close_code=events.CLOSE_AUTH_FAILED)

    got_new, got_any, heard = [], [], []

    async def on_new_message(chat_id, msg):
        got_new.append((chat_id, msg))

    client = ChatSocketClient(
        "ws://test/ws",
        store,
        on_new_message=on_new_message,
        on_any_message=got_any.append,
        connect=_connector(sock),
    )
    client.add_listener(heard.append)

    await client.run()

    assert got_new == [("chat-1", message)]
    assert got_any == [frame]
    assert heard == [frame]


@pytest.mark.asyncio
async def test_chat_id_falls_back_to_message_fields(store):
    frame = {"type": "new_message", "message": {"tripId": "trip-9", "text": "x"}}
    sock = ScriptedSocket([frame], close_code=events.CLOSE_AUTH_FAILED)
    got = []
    client = ChatSocketClient(
        "ws://test/ws", store,
        on_new_message=lambda chat_id, msg: got.append(chat_id),
        connect=_connector(sock),
    )

    await client.run()

    assert got == ["trip-9"]


@pytest.mark.asyncio
async def test_other_frames_only_reach_generic_handlers(store):
    frame = {"type": "unread_count", "unreadCount": 2}
    sock = ScriptedSocket(["garbage", frame], close_code=events.CLOSE_AUTH_FAILED)
    got_new, got_any = [], []
    client = ChatSocketClient(
        "ws://test/ws", store,
        on_new_message=lambda *a: got_new.append(a),
        on_any_message=got_any.append,
        connect=_connector(sock),
    )

    await client.run()

    assert got_new == []
    assert got_any == [frame]


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(store):
    frame = {"type": "conversations_update", "conversations": {}}
    sock = ScriptedSocket([frame], close_code=events.CLOSE_AUTH_FAILED)
    heard = []

    def broken(_):
        raise RuntimeError("listener bug")

    client = ChatSocketClient("ws://test/ws", store, connect=_connector(sock))
    client.add_listener(broken)
    client.add_listener(heard.append)

    await client.run()

    assert heard == [frame]


@pytest.mark.asyncio
async def test_failing_callback_keeps_session_and_reconnects(store):
    unread = {"type": "unread_count", "unreadCount": 2}
    new = {"type": "new_message", "chatId": "c1", "message": {"id": 1, "text": "hi"}}
    first = ScriptedSocket([unread, new], close_code=1006)
    second = ScriptedSocket([], close_code=events.CLOSE_AUTH_FAILED)
    connect = _connector(first, second)
    heard = []

    def broken(*_):
        raise RuntimeError("ui bug")

    client = ChatSocketClient(
        "ws://test/ws", store,
        on_any_message=broken,
        on_new_message=broken,
        policy=_fast_policy(),
        connect=connect,
    )
    client.add_listener(heard.append)

    await client.run()

    assert heard == [unread, new]
    assert len(connect.calls) == 2


@pytest.mark.asyncio
async def test_failing_logout_callback_still_clears_token(store):
    def broken(_):
        raise RuntimeError("ui bug")

    sock = ScriptedSocket([{"type": "forced_logout"}], close_code=None)
    connect = _connector(sock)
    client = ChatSocketClient("ws://test/ws", store, on_logout=broken, connect=connect)

    await client.run()

    assert store.load() is None
    assert len(connect.calls) == 1


def test_remove_listener():
    client = ChatSocketClient("ws://test/ws", CredentialStore("/nonexistent/creds.json"))
    client.add_listener(print)
    client.remove_listener(print)
    client.remove_listener(print)
    assert client._listeners == []


# ═══════════════════════════════════════════════════════════
# Logout and credentials
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_forced_logout_clears_token_and_stops(store):
    sock = ScriptedSocket(
        [{"type": "auth_ok", "userId": "u1"}, {"type": "forced_logout", "reason": "account_blocked"}],
        close_code=None,
    )
    logouts = []
    connect = _connector(sock)
    client = ChatSocketClient(
        "ws://test/ws", store, on_logout=logouts.append, policy=_fast_policy(), connect=connect
    )

    await client.run()

    assert logouts == [{"type": "forced_logout", "reason": "account_blocked"}]
    assert store.load() is None
    assert len(connect.calls) == 1


@pytest.mark.asyncio
async def test_no_token_means_no_connection(tmp_path):
    connect = _connector()
    client = ChatSocketClient("ws://test/ws", CredentialStore(tmp_path / "none.json"), connect=connect)

    await client.run()

    assert connect.calls == []


def test_credential_store(tmp_path):
    path = tmp_path / "nested" / "credentials.json"
    store = CredentialStore(path)
    assert store.load() is None

    store.save("abc", email="a@example.com")
    assert store.load() == "abc"
    assert json.loads(path.read_text())["email"] == "a@example.com"
    assert (path.stat().st_mode & 0o777) == 0o600

    store.clear()
    assert store.load() is None
    store.clear()


def test_credential_store_ignores_garbage(tmp_path):
    path = tmp_path / "credentials.json"
    path.write_text("{not json")
    assert CredentialStore(path).load() is None


# ═══════════════════════════════════════════════════════════
# Reconnects
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_reconnects_after_drop(store):
    first = ScriptedSocket([{"type": "auth_ok", "userId": "u1"}], close_code=1006)
    second = ScriptedSocket([{"type": "auth_ok", "userId": "u1"}], close_code=events.CLOSE_AUTH_FAILED)
    connect = _connector(first, second)
    client = ChatSocketClient("ws://test/ws", store, policy=_fast_policy(), connect=connect)

    await client.run()

    assert len(connect.calls) == 2
    assert second.sent[0] == {"type": "auth", "token": "token-1"}
    assert client.last_close_code == events.CLOSE_AUTH_FAILED


@pytest.mark.asyncio
async def test_connect_error_is_retried(store):
    calls = []
    final = ScriptedSocket([], close_code=events.CLOSE_AUTH_MALFORMED)

    def connect(url):
        calls.append(url)
        if len(calls) == 1:
            raise OSError("connection refused")
        return final

    client = ChatSocketClient("ws://test/ws", store, policy=_fast_policy(), connect=connect)

    await client.run()

    assert len(calls) == 2


@pytest.mark.parametrize(
    "code", [events.CLOSE_AUTH_FAILED, events.CLOSE_AUTH_MALFORMED, events.CLOSE_FORCED_LOGOUT]
)
@pytest.mark.asyncio
async def test_terminal_close_codes_stop_reconnecting(store, code):
    connect = _connector(ScriptedSocket([], close_code=code))
    client = ChatSocketClient("ws://test/ws", store, policy=_fast_policy(), connect=connect)

    await client.run()

    assert len(connect.calls) == 1


@pytest.mark.asyncio
async def test_set_token_reconnects_with_new_token(store):
    second = ScriptedSocket([], close_code=events.CLOSE_AUTH_FAILED)
    client = None

    class Rotating(ScriptedSocket):
        async def _frames(self):
            await client.set_token("token-2")
            yield json.dumps({"type": "pong"})

    first = Rotating([], close_code=1000)
    connect = _connector(first, second)
    client = ChatSocketClient("ws://test/ws", store, connect=connect)

    await client.run()

    assert first.closed
    assert second.sent[0] == {"type": "auth", "token": "token-2"}
    assert store.load() == "token-2"


def test_backoff_doubles_up_to_cap():
    policy = ReconnectPolicy(initial_delay=1.0, factor=2.0, max_delay=30.0)
    delays = [policy.next_delay() for _ in range(7)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]

    policy.reset()
    assert policy.next_delay() == 1.0


def test_backoff_jitter_stays_in_range():
    policy = ReconnectPolicy(initial_delay=10.0, jitter=0.1)
    for _ in range(20):
        policy.reset()
        assert 9.0 <= policy.next_delay() <= 11.0
