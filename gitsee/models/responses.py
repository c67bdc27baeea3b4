"""
API Response Models - Pydantic models for API responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    environment: str
    timestamp: datetime = Field(default_factory=_utcnow)


class GitseeResponse(BaseModel):
    """
    Response carrying whichever data types were requested.

    Example:
        {
            "repo": {"full_name": "acme/widgets", ...},
            "exploration": {"summary": "...", "key_files": [...], "features": [...]}
        }
    """
    repo: Optional[Dict[str, Any]] = None
    contributors: Optional[List[Dict[str, Any]]] = None
    files: Optional[List[Dict[str, Any]]] = None
    icon: Optional[str] = None
    stats: Optional[Dict[str, Any]] = None
    commits: Optional[List[Dict[str, Any]]] = None
    branches: Optional[List[Dict[str, Any]]] = None
    file_content: Optional[Dict[str, Any]] = None
    exploration: Optional[Dict[str, Any]] = None
    errors: Dict[str, str] = Field(
        default_factory=dict,
        description="Per data type failures; other data types are still returned"
    )
