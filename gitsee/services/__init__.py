"""
Services Layer
==============

Services handle the core logic and external integrations:

- command_runner: bounded subprocess execution (ripgrep, git)
- repo_service: snapshot paths and the clone orchestrator (RepoCloner)
- navigator: read-only inspection tools over a snapshot
- event_bus: per-repository lifecycle events
- cache / file_store: TTL metadata cache and durable JSON records
- github_client: GitHub REST metadata
- exploration_service: clone -> explore -> store -> publish

DEPENDENCY FLOW:
----------------
    RepoCloner ──────┐
    RepoExplorer ────┼──► ExplorationService ──► ExplorationEventBus
    FileStore ───────┘
"""

from gitsee.services.cache import TTLCache
from gitsee.services.event_bus import ExplorationEventBus
from gitsee.services.file_store import FileStore
from gitsee.services.repo_service import RepoCloner, RepoClonerConfig

__all__ = [
    "TTLCache",
    "ExplorationEventBus",
    "FileStore",
    "RepoCloner",
    "RepoClonerConfig",
]
