"""
Dependencies - Composition root for services.

ServiceContainer builds every long-lived service once from Settings. The
FastAPI lifespan creates it and stores it on ``app.state.services``;
route dependencies read it back from the request.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from gitsee.agents.explorer import RepoExplorer
from gitsee.agents.llm import AnthropicCompletionClient, CompletionClient
from gitsee.core.config import Settings
from gitsee.services.cache import TTLCache
from gitsee.services.event_bus import ExplorationEventBus
from gitsee.services.exploration_service import ExplorationService
from gitsee.services.file_store import FileStore
from gitsee.services.github_client import GitHubClient
from gitsee.services.repo_service import RepoCloner, RepoClonerConfig

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Every long-lived service, wired together."""
    settings: Settings
    cache: TTLCache
    store: FileStore
    event_bus: ExplorationEventBus
    cloner: RepoCloner
    explorer: RepoExplorer
    github: GitHubClient
    explorations: ExplorationService

    @classmethod
    def build(
        cls,
        settings: Settings,
        completion_client: Optional[CompletionClient] = None,
        github: Optional[GitHubClient] = None,
    ) -> "ServiceContainer":
        """Construct all services from settings."""
        cache = TTLCache(ttl_seconds=settings.cache_ttl_seconds)
        store = FileStore(settings.data_dir)
        event_bus = ExplorationEventBus()
        cloner = RepoCloner(
            RepoClonerConfig(
                base_path=settings.clone_base_path,
                clone_timeout_seconds=settings.clone_timeout_seconds,
                registry_grace_seconds=settings.clone_registry_grace_seconds,
            ),
            event_bus=event_bus,
        )
        explorer = RepoExplorer(
            completion_client or AnthropicCompletionClient(
                api_key=settings.anthropic_api_key,
                model=settings.llm_model,
                max_tokens=settings.llm_max_tokens,
            ),
            max_steps=settings.max_exploration_steps,
            search_timeout=settings.search_timeout_seconds,
            search_max_output=settings.search_max_output_chars,
        )
        explorations = ExplorationService(
            cloner=cloner,
            explorer=explorer,
            store=store,
            event_bus=event_bus,
            max_age_hours=settings.exploration_max_age_hours,
            subscriber_wait_seconds=settings.subscriber_wait_seconds,
        )
        return cls(
            settings=settings,
            cache=cache,
            store=store,
            event_bus=event_bus,
            cloner=cloner,
            explorer=explorer,
            github=github or GitHubClient(
                cache, token=settings.github_token, base_url=settings.github_api_url
            ),
            explorations=explorations,
        )

    async def close(self) -> None:
        await self.explorations.shutdown()
        await self.github.close()
        logger.info("Services shut down")


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the application's service container."""
    return request.app.state.services
