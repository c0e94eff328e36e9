"""
Shared helpers for Wayzer examples.

Registers throwaway users and logs them in so each example can focus on
its chat flow.
"""

import sys
import uuid

import httpx

BASE = "http://localhost:5000/api/v1"
WS_URL = "ws://localhost:5000/ws"


def check_backend() -> None:
    """Verify the backend is reachable and healthy."""
    try:
        resp = httpx.get(f"{BASE}/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Backend not reachable at {BASE}")
        print("Start it with:  uvicorn wayzer.main:app --reload --port 5000")
        sys.exit(1)

    health = resp.json()
    print("Backend health:")
    print(f"  Database: {health['database']}")
    print(f"  Redis:    {health['redis']}")
    if health["database"] != "ok":
        print("\nERROR: Database is not reachable. Run `alembic upgrade head` against a running Postgres.")
        sys.exit(1)


def signup(name: str) -> dict:
    """Register and log in a fresh user. Returns id, name, token and an httpx Client."""
    run_id = uuid.uuid4().hex[:8]
    email = f"{name.lower()}-{run_id}@example.com"
    password = "demo-password-123"

    resp = httpx.post(
        f"{BASE}/auth/register",
        json={"email": email, "name": name, "password": password},
        timeout=10,
    )
    if resp.status_code != 201:
        print(f"ERROR: Registration failed: {resp.status_code} {resp.text}")
        sys.exit(1)
    user = resp.json()

    resp = httpx.post(
        f"{BASE}/auth/login",
        json={"email": email, "password": password},
        timeout=10,
    )
    if resp.status_code != 200:
        print(f"ERROR: Login failed: {resp.status_code} {resp.text}")
        sys.exit(1)
    token = resp.json()["access_token"]

    print(f"  {name}: {user['id'][:8]}... ({email})")
    return {
        "id": user["id"],
        "name": name,
        "token": token,
        "client": httpx.Client(
            base_url=BASE, timeout=10, headers={"Authorization": f"Bearer {token}"}
        ),
    }
