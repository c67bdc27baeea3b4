"""
Health Check Endpoints - Application health and status monitoring.
"""

import shutil
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from gitsee.core.config import get_settings, Settings
from gitsee.models.responses import HealthResponse


router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check if the API is running and healthy"
)
async def health_check(
    settings: Settings = Depends(get_settings)
) -> HealthResponse:
    """
    Basic health check endpoint.

    Returns:
        HealthResponse with status and version info
    """
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc)
    )


@router.get(
    "/ready",
    summary="Readiness Check",
    description="Check if the external tools and credentials are available"
)
async def readiness_check(
    settings: Settings = Depends(get_settings)
) -> dict:
    """Readiness check: git and ripgrep on PATH, model credentials configured."""
    checks = {
        "git": shutil.which("git") is not None,
        "ripgrep": shutil.which("rg") is not None,
        "llm_configured": bool(settings.anthropic_api_key),
    }

    return {
        "ready": all(checks.values()),
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
