"""API route aggregation.

All routers registered here get mounted in main.py.

Auth is applied at the include_router level using FastAPI's
dependencies parameter. Health and auth routers are open; admin routes
additionally require the admin role.
"""

from fastapi import APIRouter, Depends

from wayzer.api.admin import router as admin_router
from wayzer.api.auth import router as auth_router
from wayzer.api.health import router as health_router
from wayzer.api.messages import router as messages_router
from wayzer.api.trips import router as trips_router
from wayzer.auth.dependencies import get_current_user, require_admin

# All protected routers require authentication
_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Protected routes — require a valid access token
api_router.include_router(messages_router, tags=["messages"], dependencies=_auth)
api_router.include_router(trips_router, tags=["trips"], dependencies=_auth)
api_router.include_router(admin_router, tags=["admin"], dependencies=[Depends(require_admin)])
