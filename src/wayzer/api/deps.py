"""Shared route dependencies."""

from fastapi import Request

from wayzer.realtime.relay import EventRelay


def get_relay(request: Request) -> EventRelay:
    """The app-wide EventRelay (built in main.create_app)."""
    return request.app.state.relay
