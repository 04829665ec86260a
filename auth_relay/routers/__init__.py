from .health_routes import router as health_router
from .auth_routes import router as auth_router

__all__ = [
    "health_router",
    "auth_router",
]
