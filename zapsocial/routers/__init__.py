"""
API routers package.
"""
from zapsocial.routers.auth import router as auth_router
from zapsocial.routers.integrations import router as integrations_router

__all__ = [
    "auth_router",
    "integrations_router",
]
