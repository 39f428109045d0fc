"""API endpoints package for YK Buddy."""

from ykbuddy.app.api.admin import router as admin_router
from ykbuddy.app.api.weather import router as weather_router

__all__ = [
    "admin_router",
    "weather_router",
]
