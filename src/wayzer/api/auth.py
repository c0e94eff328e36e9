"""Auth API — registration, login, token refresh.

- POST /auth/register → create a new user account
- POST /auth/login → email/password → JWT tokens (blocked accounts get 403)
- POST /auth/refresh → refresh token → new token pair
- GET /auth/me → current user info

The access token issued here is the one clients send in the WebSocket
auth frame.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wayzer.auth.dependencies import CurrentIdentity, get_current_user
from wayzer.auth.jwt import (
    TokenError,
    create_access_token,
    create_refresh_token,
    verify_token,
)
from wayzer.auth.password import hash_password, verify_password
from wayzer.db.engine import get_db
from wayzer.db.models import User
from wayzer.schemas.user import UserRead

router = APIRouter(prefix="/auth")


# ─── Schemas ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: str
    name: str
    password: str = Field(min_length=8)
    avatar_url: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


def _tokens(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(str(user.id), email=user.email),
        refresh_token=create_refresh_token(str(user.id)),
    )


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create a new user account."""
    result = await db.execute(select(User).where(User.email == body.email))
    if result.scalars().first():
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        email=body.email,
        name=body.name,
        password_hash=hash_password(body.password),
        avatar_url=body.avatar_url,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Login with email and password → JWT tokens."""
    result = await db.execute(select(User).where(User.email == body.email))
    user = result.scalars().first()

    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.status == "blocked":
        raise HTTPException(status_code=403, detail="Account is blocked")

    return _tokens(user)


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Exchange a refresh token for a new token pair."""
    try:
        payload = verify_token(body.refresh_token, token_type="refresh")
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e))

    user = await db.get(User, _parse_sub(payload["sub"]))
    if not user:
        raise HTTPException(status_code=401, detail="User no longer exists")
    if user.status == "blocked":
        raise HTTPException(status_code=403, detail="Account is blocked")
    return _tokens(user)


def _parse_sub(sub: str) -> uuid.UUID:
    try:
        return uuid.UUID(sub)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject")


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=UserRead)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the current authenticated user's info."""
    user = await db.get(User, identity.uuid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
