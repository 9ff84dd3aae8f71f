"""API routes for the StillMind entry service."""

from stillmind.server.routes.auth import router as auth_router
from stillmind.server.routes.entries import router as entries_router

__all__ = [
    "auth_router",
    "entries_router",
]
