"""
Core Domain Schemas - Shared data models used across the application.
"""

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, ValidationInfo, field_validator


SCHEMA_VERSION = "1.0.0"


def now_ms() -> int:
    """Current unix time in milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RepositoryIdentity:
    """The (owner, name) pair identifying a remote repository."""
    owner: str
    name: str

    def __post_init__(self):
        if not self.owner or not self.name:
            raise ValueError("Owner and repo are required")

    @property
    def key(self) -> str:
        """Registry and event channel key."""
        return f"{self.owner}/{self.name}"

    @property
    def storage_key(self) -> str:
        """Filesystem-safe directory name for the result store."""
        return re.sub(r"[^a-zA-Z0-9-]", "_", f"{self.owner}-{self.name}")

    @property
    def github_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}.git"

    def __str__(self) -> str:
        return self.key


class CloneStatus(str, Enum):
    """Status of a clone job."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class CloneJob:
    """Outcome of acquiring a local snapshot for one repository."""
    identity: RepositoryIdentity
    local_path: str
    status: CloneStatus = CloneStatus.PENDING
    error: Optional[str] = None
    duration_ms: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.status == CloneStatus.SUCCESS


class ExplorationMode(str, Enum):
    """Named configurations of the exploration loop."""
    FIRST_PASS = "first_pass"
    GENERAL = "general"
    SERVICES = "services"


# =============================================================================
# EXPLORATION RESULTS
# =============================================================================


class FirstPassResult(BaseModel):
    """Fast, shallow overview of a repository."""
    summary: str
    key_files: List[str] = Field(default_factory=list)
    infrastructure: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    user_stories: List[str] = Field(default_factory=list)
    pages: List[str] = Field(default_factory=list)


class GeneralResult(BaseModel):
    """Deeper feature-level understanding of a repository."""
    summary: str
    key_files: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)


class ServicesResult(BaseModel):
    """Configuration files needed to run a repository locally."""
    summary: str
    pm2_config: str = ""
    env_file: str = ""
    docker_compose: str = ""


ExplorationResult = Union[FirstPassResult, GeneralResult, ServicesResult]

RESULT_MODELS = {
    ExplorationMode.FIRST_PASS: FirstPassResult,
    ExplorationMode.GENERAL: GeneralResult,
    ExplorationMode.SERVICES: ServicesResult,
}


class StoredExploration(BaseModel):
    """An exploration result persisted with its metadata."""
    mode: ExplorationMode
    result: ExplorationResult
    timestamp: int = Field(default_factory=now_ms, description="Unix time in ms")
    owner: str
    repo: str
    version: str = SCHEMA_VERSION

    @field_validator("result", mode="before")
    @classmethod
    def _result_for_mode(cls, value: Any, info: ValidationInfo) -> Any:
        mode = info.data.get("mode")
        if isinstance(value, dict) and mode is not None:
            return RESULT_MODELS[ExplorationMode(mode)].model_validate(value)
        return value


# =============================================================================
# EVENTS
# =============================================================================


class EventType(str, Enum):
    """Lifecycle notifications published on the event bus."""
    CLONE_STARTED = "clone_started"
    CLONE_COMPLETED = "clone_completed"
    EXPLORATION_STARTED = "exploration_started"
    EXPLORATION_PROGRESS = "exploration_progress"
    EXPLORATION_COMPLETED = "exploration_completed"
    EXPLORATION_FAILED = "exploration_failed"


class ExplorationEvent(BaseModel):
    """A typed notification for one repository."""
    type: EventType
    owner: str
    repo: str
    mode: Optional[ExplorationMode] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)

    def to_wire(self) -> Dict[str, Any]:
        """JSON-ready dict with absent optional fields omitted."""
        return self.model_dump(mode="json", exclude_none=True)
