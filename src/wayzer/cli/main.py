"""Wayzer CLI — log in, read and send chat messages, watch notifications live.

Usage:
    wayzer login alice@example.com            # Prompts for the password, stores the token
    wayzer whoami                             # Current account
    wayzer conversations                      # Inbox: requested / private / public / archived
    wayzer history <chat-id>                  # Messages of a chat (marks it read)
    wayzer send "hi" --to <user-id>           # Start or continue a private chat
    wayzer send "hi" --chat <chat-id>         # Post to an existing chat
    wayzer unread                             # Unread message count
    wayzer listen                             # Stream live notifications until Ctrl-C
    wayzer logout                             # Forget the stored token
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from pathlib import Path
from typing import Optional

import click
import httpx

from wayzer import __version__
from wayzer.realtime import events
from wayzer.realtime.client import ChatSocketClient, CredentialStore

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:5000"
DEFAULT_CREDENTIALS = Path("~/.wayzer/credentials.json")


def _api_url() -> str:
    return os.environ.get("WAYZER_API_URL", DEFAULT_API_URL).rstrip("/")


def _ws_url() -> str:
    """WAYZER_WS_URL, or the API URL with a ws scheme and the /ws path."""
    explicit = os.environ.get("WAYZER_WS_URL")
    if explicit:
        return explicit
    base = _api_url()
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return base + "/ws"


def _credentials() -> CredentialStore:
    return CredentialStore(os.environ.get("WAYZER_CREDENTIALS") or DEFAULT_CREDENTIALS)


def _client(token: Optional[str] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the Wayzer backend."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0, headers=headers)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when an event loop is already running
    (e.g. Click's CliRunner inside an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _require_token() -> str:
    token = _credentials().load()
    if not token:
        click.secho("Not logged in. Run: wayzer login <email>", fg="red", err=True)
        sys.exit(1)
    return token


def _check(r: httpx.Response) -> None:
    """Exit with the API's error detail on a non-2xx response."""
    if r.is_success:
        return
    if r.status_code == 401:
        click.secho("Session expired or invalid. Run: wayzer login <email>", fg="red", err=True)
        sys.exit(1)
    try:
        detail = r.json().get("detail", r.text)
    except ValueError:
        detail = r.text
    click.secho(f"Error {r.status_code}: {detail}", fg="red", err=True)
    sys.exit(1)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k) or "—")[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


_MESSAGE_COLORS = {
    "green": "green",
    "red": "red",
    "yellow": "yellow",
    "request": "cyan",
}


# Message types a user writes; everything else is a coloured system notice.
_USER_MESSAGE_TYPES = ("general", "request")


def _sender_name(message: dict) -> str:
    sender = message.get("sender")
    if sender:
        return sender.get("name") or "unknown"
    if message.get("type") in _USER_MESSAGE_TYPES:
        return "deleted user"
    return "system"


def _format_message(message: dict) -> str:
    sender = _sender_name(message)
    created = str(message.get("createdAt", ""))[:19].replace("T", " ")
    text = click.style(message.get("text", ""), fg=_MESSAGE_COLORS.get(message.get("type")))
    return f"[{created}] {sender}: {text}"


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="wayzer")
def main():
    """Wayzer — trip chat from the terminal."""


# ---------------------------------------------------------------------------
# wayzer login / logout / whoami
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
def login(email: str, password: str):
    """Log in and store the access token."""
    _run(_login_impl(email, password))


async def _login_impl(email: str, password: str):
    async with _client() as c:
        r = await c.post("/api/v1/auth/login", json={"email": email, "password": password})
        _check(r)
        tokens = r.json()

    store = _credentials()
    store.save(tokens["access_token"], refresh_token=tokens["refresh_token"], email=email)
    click.secho(f"Logged in as {email}", fg="green")


@main.command()
def logout():
    """Forget the stored token."""
    _credentials().clear()
    click.echo("Logged out.")


@main.command()
def whoami():
    """Show the logged-in account."""
    _run(_whoami_impl())


async def _whoami_impl():
    async with _client(_require_token()) as c:
        r = await c.get("/api/v1/auth/me")
        _check(r)
        me = r.json()
    click.echo(f"{me['name']} <{me['email']}>  id={me['id']}  role={me['role']}")


# ---------------------------------------------------------------------------
# wayzer conversations / history / unread
# ---------------------------------------------------------------------------


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def conversations(as_json: bool):
    """List conversations grouped the way the inbox shows them."""
    _run(_conversations_impl(as_json))


async def _conversations_impl(as_json: bool):
    async with _client(_require_token()) as c:
        r = await c.get("/api/v1/conversations")
        _check(r)
        buckets = r.json()

    if as_json:
        click.echo(json.dumps(buckets, indent=2))
        return

    for name in ("requested", "private", "public", "archived"):
        convs = buckets.get(name, [])
        click.secho(f"{name.capitalize()} ({len(convs)}):", bold=True)
        if not convs:
            click.echo("  (none)")
            continue
        rows = [
            {
                "chat": conv["chatId"],
                "with": conv.get("tripTitle") or conv.get("otherUserName"),
                "unread": conv.get("unreadCount", 0),
                "last": (conv.get("lastMessage") or {}).get("text"),
            }
            for conv in convs
        ]
        _print_table(rows, [
            ("CHAT", "chat", 36),
            ("WITH", "with", 20),
            ("UNREAD", "unread", 6),
            ("LAST MESSAGE", "last", 40),
        ])
        click.echo()


@main.command()
@click.argument("chat_id")
def history(chat_id: str):
    """Print the messages of a chat. Marks the chat as read."""
    _run(_history_impl(chat_id))


async def _history_impl(chat_id: str):
    async with _client(_require_token()) as c:
        r = await c.get(f"/api/v1/messages/{chat_id}")
        _check(r)
        messages = r.json()

    if not messages:
        click.echo("(no messages)")
    for message in messages:
        click.echo(_format_message(message))


@main.command()
def unread():
    """Show the number of unread messages."""
    _run(_unread_impl())


async def _unread_impl():
    async with _client(_require_token()) as c:
        r = await c.get("/api/v1/unread-count")
        _check(r)
    click.echo(r.json()["unreadCount"])


# ---------------------------------------------------------------------------
# wayzer send
# ---------------------------------------------------------------------------


@main.command()
@click.argument("text")
@click.option("--chat", "chat_id", help="Chat UUID to post to")
@click.option("--to", "receiver_id", help="User UUID to message privately")
@click.option("--trip", "trip_id", help="Trip UUID the message refers to")
def send(text: str, chat_id: Optional[str], receiver_id: Optional[str], trip_id: Optional[str]):
    """Send a message to a chat or a user."""
    if not chat_id and not receiver_id:
        click.secho("Error: --chat or --to is required", fg="red", err=True)
        sys.exit(1)
    _run(_send_impl(text, chat_id, receiver_id, trip_id))


async def _send_impl(text: str, chat_id: Optional[str], receiver_id: Optional[str],
                     trip_id: Optional[str]):
    body: dict = {"text": text}
    if chat_id:
        body["chatId"] = chat_id
    if receiver_id:
        body["receiverId"] = receiver_id
    if trip_id:
        body["tripId"] = trip_id

    async with _client(_require_token()) as c:
        r = await c.post("/api/v1/messages", json=body)
        _check(r)
        message = r.json()
    click.secho(f"Sent to chat {message['chatId']}", fg="green")


# ---------------------------------------------------------------------------
# wayzer listen
# ---------------------------------------------------------------------------


@main.command()
@click.option("--raw", is_flag=True, help="Print every frame as JSON")
def listen(raw: bool):
    """Stream live notifications until interrupted.

    Reconnects with backoff when the connection drops; exits when the
    server rejects the token or logs this account out.
    """
    _require_token()
    try:
        _run(_listen_impl(raw))
    except KeyboardInterrupt:
        click.echo()


async def _listen_impl(raw: bool):
    def on_frame(frame: dict):
        if raw:
            click.echo(json.dumps(frame))
            return
        frame_type = frame.get("type")
        if frame_type == events.NEW_MESSAGE:
            click.echo(f"({frame.get('chatId')}) {_format_message(frame['message'])}")
        elif frame_type == events.UNREAD_COUNT:
            click.secho(f"Unread: {frame.get('unreadCount')}", fg="cyan")
        elif frame_type == events.CONVERSATIONS_UPDATE:
            click.secho("Conversations updated", fg="cyan")

    def on_logout(frame: dict):
        click.secho(
            f"Logged out by the server ({frame.get('reason') or 'no reason given'})",
            fg="red",
            err=True,
        )

    client = ChatSocketClient(_ws_url(), _credentials(), on_logout=on_logout)
    client.add_listener(on_frame)
    click.secho(f"Listening on {client.url} (Ctrl-C to stop)", fg="green")
    await client.run()

    if client.last_close_code in (events.CLOSE_AUTH_FAILED, events.CLOSE_AUTH_MALFORMED):
        click.secho("Token rejected. Run: wayzer login <email>", fg="red", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
