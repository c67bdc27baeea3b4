"""
API Layer - FastAPI routes and middleware.
"""

from gitsee.api.routes import health_router, gitsee_router

__all__ = [
    "health_router",
    "gitsee_router",
]
