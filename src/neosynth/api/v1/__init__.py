"""REST API routes.

Combines the auth and API key routers under the ``/api`` prefix.
"""

from fastapi import APIRouter

from neosynth.api.v1.api_keys import router as api_keys_router
from neosynth.api.v1.auth import router as auth_router

api_router = APIRouter(prefix="/api")

api_router.include_router(auth_router)
api_router.include_router(api_keys_router)

__all__ = ["api_router"]
