"""API route modules."""

from .admin_routes import router as admin_router
from .attendance_routes import router as attendance_router
from .health_routes import router as health_router
from .streak_routes import router as streak_router

__all__ = [
    "admin_router",
    "attendance_router",
    "health_router",
    "streak_router",
]
