"""API routers for Mailbench."""

from fastapi import APIRouter
from mailbench.api import api_keys, auth, gmail

api_router = APIRouter(prefix="/api/v1")

# Authentication routes (public and protected endpoints)
api_router.include_router(auth.router)

# Protected routes (user session required)
api_router.include_router(gmail.router)
api_router.include_router(api_keys.router)

__all__ = ["api_router"]
