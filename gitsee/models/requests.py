"""
API Request Models - Pydantic models for request validation.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gitsee.models.schemas import ExplorationMode


class DataType(str, Enum):
    """Kinds of data a client can ask for in one request."""
    REPO_INFO = "repo_info"
    CONTRIBUTORS = "contributors"
    FILES = "files"
    ICON = "icon"
    STATS = "stats"
    COMMITS = "commits"
    BRANCHES = "branches"
    FILE_CONTENT = "file_content"
    EXPLORATION = "exploration"


class GitseeRequest(BaseModel):
    """
    Request for repository data.

    Either owner and repo or a GitHub repoUrl must be given.

    Example:
        {
            "owner": "acme",
            "repo": "widgets",
            "data": ["repo_info", "exploration"],
            "explorationMode": "general"
        }
    """
    model_config = ConfigDict(populate_by_name=True)

    owner: Optional[str] = Field(default=None, examples=["acme"])
    repo: Optional[str] = Field(default=None, examples=["widgets"])
    repo_url: Optional[str] = Field(
        default=None,
        alias="repoUrl",
        description="GitHub URL, used when owner and repo are not given",
        examples=["https://github.com/acme/widgets"]
    )
    data: List[str] = Field(
        ...,
        min_length=1,
        description="Requested data types; unknown types are ignored",
        examples=[["repo_info", "contributors", "files"]]
    )
    exploration_mode: Optional[ExplorationMode] = Field(
        default=None,
        alias="explorationMode",
        description="Mode for the 'exploration' data type (default: general)"
    )
    exploration_prompt: Optional[str] = Field(
        default=None,
        alias="explorationPrompt",
        max_length=4000,
        description="Prompt for an on-demand exploration"
    )
    file_path: Optional[str] = Field(
        default=None,
        alias="filePath",
        description="Repository path for the 'file_content' data type"
    )

    @field_validator("owner", "repo")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("Owner and repo are required")
        return v

    @model_validator(mode="after")
    def require_repository(self) -> "GitseeRequest":
        if not self.repo_url and not (self.owner and self.repo):
            raise ValueError("Either owner and repo or repoUrl is required")
        return self
