"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Health and auth routers are open at the router level; protected
handlers declare their own Depends(get_authorizer) / get_current_user,
because each one needs the identity for a policy decision anyway.
"""

from fastapi import APIRouter

from notevault.api.admin import router as admin_router
from notevault.api.auth import router as auth_router
from notevault.api.health import router as health_router
from notevault.api.notes import router as notes_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(notes_router, tags=["notes"])
api_router.include_router(admin_router, tags=["admin"])
