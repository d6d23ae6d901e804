"""Routers package for the calendar API."""

from .auth import router as auth_router
from .cache import router as cache_router
from .plans import router as plans_router

__all__ = ["auth_router", "cache_router", "plans_router"]
