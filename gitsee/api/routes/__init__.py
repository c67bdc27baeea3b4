"""
API Routes - FastAPI route modules.
"""

from gitsee.api.routes.health import router as health_router
from gitsee.api.routes.gitsee import router as gitsee_router

__all__ = [
    "health_router",
    "gitsee_router",
]
