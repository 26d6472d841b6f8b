"""
API Routers
"""
from .triggers import router as notifications_router
from .sessions import router as sessions_router

__all__ = ["notifications_router", "sessions_router"]
