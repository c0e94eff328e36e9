"""JWT token creation and verification.

- Access token: used for API calls and the WebSocket handshake
- Refresh token: long-lived (30 days), used to get new access tokens

The token carries the user id in "sub" and the email for display.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from wayzer.config import settings


class TokenError(Exception):
    """Raised when token creation/verification fails."""


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "exp": now + timedelta(
            minutes=expires_minutes or settings.access_token_expire_minutes
        ),
        "iat": now,
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_refresh_token(
    user_id: str,
    expires_days: Optional[int] = None,
) -> str:
    """Create a JWT refresh token."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": "refresh",
        "exp": now + timedelta(
            days=expires_days or settings.refresh_token_expire_days
        ),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, token_type: Optional[str] = "access") -> dict:
    """Verify and decode a JWT token.

    Returns the payload dict on success. When token_type is given, a token
    of another type (e.g. a refresh token presented as an access token)
    is rejected. Raises TokenError on failure.
    """
    try:
        payload = jwt.decode(
            token, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    if token_type and payload.get("type") != token_type:
        raise TokenError(f"Expected a {token_type} token")
    if not payload.get("sub"):
        raise TokenError("Token has no subject")
    return payload
