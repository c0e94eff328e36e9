"""Test fixtures — a fresh app and an in-memory SQLite database per test.

1. Env vars are set before wayzer is imported: settings are read once at
   import time. An empty WAYZER_REDIS_URL turns off rate limiting and
   cross-instance fan-out.
2. Each test gets its own aiosqlite engine on a StaticPool (one shared
   connection, so every session sees the same in-memory database) with
   the schema created from the ORM metadata.
3. get_db is overridden to hand out sessions from that engine, and the
   WebSocket handshake verifies tokens against the same database.

Users are real rows; requests authenticate with real JWTs.
"""

import os

os.environ["WAYZER_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["WAYZER_REDIS_URL"] = ""
os.environ.setdefault("WAYZER_ENVIRONMENT", "development")

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from wayzer.auth.jwt import create_access_token  # noqa: E402
from wayzer.auth.password import hash_password  # noqa: E402
from wayzer.db.engine import get_db  # noqa: E402
from wayzer.db.models import Base, User  # noqa: E402
from wayzer.main import create_app  # noqa: E402
from wayzer.realtime.handshake import DatabaseTokenVerifier  # noqa: E402

TEST_DB_URL = "sqlite+aiosqlite://"
TEST_PASSWORD = "secure_password_123"


def make_engine():
    return create_async_engine(
        TEST_DB_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def create_user(
    session_factory,
    name: str,
    role: str = "user",
    status: str = "active",
) -> User:
    async with session_factory() as session:
        user = User(
            email=f"{name.lower()}@example.com",
            name=name,
            password_hash=hash_password(TEST_PASSWORD),
            role=role,
            status=status,
        )
        session.add(user)
        await session.commit()
        return user


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), email=user.email)}"}


@pytest_asyncio.fixture()
async def engine():
    engine = make_engine()
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """Session for calling services directly."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def app(session_factory):
    """A fresh app (own connection registry) wired to the test database."""
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.handshake.verify_token = DatabaseTokenVerifier(session_factory)
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def alice(session_factory):
    return await create_user(session_factory, "Alice")


@pytest_asyncio.fixture()
async def bob(session_factory):
    return await create_user(session_factory, "Bob")


@pytest_asyncio.fixture()
async def carol(session_factory):
    return await create_user(session_factory, "Carol")


@pytest_asyncio.fixture()
async def admin(session_factory):
    return await create_user(session_factory, "Admin", role="admin")


@pytest_asyncio.fixture()
async def unauthenticated_client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def client(app, alice):
    """HTTP client authenticated as Alice."""
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers=auth_headers(alice)
    ) as ac:
        yield ac
