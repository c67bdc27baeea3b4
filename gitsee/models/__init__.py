"""
Data Models
===========

Organized into three categories:
- schemas: Core domain models used across the application
- requests: API request validation models
- responses: API response models
"""

from gitsee.models.schemas import (
    CloneJob,
    CloneStatus,
    EventType,
    ExplorationEvent,
    ExplorationMode,
    ExplorationResult,
    FirstPassResult,
    GeneralResult,
    RepositoryIdentity,
    ServicesResult,
    StoredExploration,
)

from gitsee.models.requests import DataType, GitseeRequest

from gitsee.models.responses import GitseeResponse, HealthResponse

__all__ = [
    # Schemas
    "CloneJob",
    "CloneStatus",
    "EventType",
    "ExplorationEvent",
    "ExplorationMode",
    "ExplorationResult",
    "FirstPassResult",
    "GeneralResult",
    "RepositoryIdentity",
    "ServicesResult",
    "StoredExploration",
    # Requests
    "DataType",
    "GitseeRequest",
    # Responses
    "GitseeResponse",
    "HealthResponse",
]
