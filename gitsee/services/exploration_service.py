"""
Exploration Service - Runs explorations end to end for one repository.

Handles:
- Waiting for the snapshot (the clone orchestrator publishes clone events)
- Running the exploration loop and forwarding tool calls as progress events
- Persisting results and publishing completion or failure
- Reusing stored results while they are fresh
- Background first_pass explorations, tracked as explicit tasks
"""

import asyncio
import json
import logging
from typing import Dict, Optional, Set, Tuple

from gitsee.agents.explorer import RepoExplorer, SessionState, parse_exploration_result
from gitsee.agents.llm import ToolCall
from gitsee.agents.modes import get_mode_config
from gitsee.core.exceptions import ExplorationFailedError, StoreError
from gitsee.models.schemas import ExplorationMode, RepositoryIdentity, StoredExploration
from gitsee.services.event_bus import ExplorationEventBus
from gitsee.services.file_store import FileStore
from gitsee.services.repo_service import RepoCloner

logger = logging.getLogger(__name__)


def describe_tool_call(call: ToolCall) -> str:
    """Short progress line for a tool call."""
    if not call.arguments:
        return call.name
    return f"{call.name}: {json.dumps(call.arguments, ensure_ascii=False)}"


class ExplorationService:
    """Coordinates cloning, exploring, storing and publishing."""

    def __init__(
        self,
        cloner: RepoCloner,
        explorer: RepoExplorer,
        store: FileStore,
        event_bus: ExplorationEventBus,
        max_age_hours: float = 24,
        subscriber_wait_seconds: float = 5.0,
    ):
        self.cloner = cloner
        self.explorer = explorer
        self.store = store
        self.event_bus = event_bus
        self.max_age_hours = max_age_hours
        self.subscriber_wait_seconds = subscriber_wait_seconds
        self._running: Dict[Tuple[str, ExplorationMode, str], "asyncio.Task[StoredExploration]"] = {}
        self._background: Set[asyncio.Task] = set()

    # =========================================================================
    # ON-DEMAND
    # =========================================================================

    async def run_exploration(
        self,
        identity: RepositoryIdentity,
        mode: ExplorationMode,
        prompt: Optional[str] = None,
    ) -> StoredExploration:
        """
        Explore a repository and store the result.

        Concurrent calls for the same identity, mode and prompt share one
        run; a different prompt starts its own session.

        Raises:
            ExplorationFailedError: If the clone or the model session failed.
            StoreError: If the result could not be persisted.
        """
        mode = ExplorationMode(mode)
        prompt = prompt or get_mode_config(mode).default_prompt
        key = (identity.key, mode, prompt)
        task = self._running.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._explore(identity, mode, prompt))
            self._running[key] = task
            task.add_done_callback(lambda t: self._running.pop(key, None))
        else:
            logger.info(f"Joining running {mode.value} exploration of {identity}")
        return await asyncio.shield(task)

    async def _explore(
        self,
        identity: RepositoryIdentity,
        mode: ExplorationMode,
        prompt: str,
    ) -> StoredExploration:
        job = await self.cloner.wait_for_clone(identity)
        if not job.success:
            message = f"Clone failed: {job.error or 'unknown error'}"
            self.event_bus.emit_exploration_failed(identity, mode, message)
            raise ExplorationFailedError(message)

        logger.info(f"Starting {mode.value} exploration of {identity}")
        self.event_bus.emit_exploration_started(identity, mode)

        def on_step(call: ToolCall) -> None:
            self.event_bus.emit_exploration_progress(identity, mode, describe_tool_call(call))

        outcome = await self.explorer.run_session(
            prompt,
            job.local_path,
            mode,
            on_step=on_step,
        )
        if outcome.state == SessionState.ERROR:
            message = f"Exploration failed: {outcome.error}"
            self.event_bus.emit_exploration_failed(identity, mode, message)
            raise ExplorationFailedError(message)

        result = parse_exploration_result(outcome.answer, mode)
        try:
            stored = self.store.store_exploration(identity, mode, result)
        except StoreError as e:
            self.event_bus.emit_exploration_failed(identity, mode, str(e))
            raise

        self.event_bus.emit_exploration_completed(identity, mode, result.model_dump(mode="json"))
        return stored

    async def get_or_run_exploration(
        self,
        identity: RepositoryIdentity,
        mode: ExplorationMode,
        prompt: Optional[str] = None,
        max_age_hours: Optional[float] = None,
    ) -> StoredExploration:
        """Return a fresh stored result, or run a new exploration."""
        mode = ExplorationMode(mode)
        max_age = self.max_age_hours if max_age_hours is None else max_age_hours
        if self.store.has_recent_exploration(identity, mode, max_age):
            stored = self.store.get_exploration(identity, mode)
            if stored is not None:
                logger.info(f"Using stored {mode.value} exploration for {identity}")
                return stored
        return await self.run_exploration(identity, mode, prompt)

    # =========================================================================
    # BACKGROUND
    # =========================================================================

    def start_first_pass_in_background(
        self, identity: RepositoryIdentity
    ) -> Optional["asyncio.Task[None]"]:
        """
        Start a first_pass exploration unless a fresh one is stored.

        Returns:
            The background task handle, or None when nothing was started.
        """
        mode = ExplorationMode.FIRST_PASS
        if self.store.has_recent_exploration(identity, mode, self.max_age_hours):
            logger.info(f"Recent first_pass exploration exists for {identity}, skipping")
            return None
        if (identity.key, mode, get_mode_config(mode).default_prompt) in self._running:
            return None

        task = asyncio.get_running_loop().create_task(self._background_first_pass(identity))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _background_first_pass(self, identity: RepositoryIdentity) -> None:
        connected = await self.event_bus.wait_for_subscriber(
            identity, timeout=self.subscriber_wait_seconds
        )
        if not connected:
            logger.info(f"Starting first_pass for {identity} without a subscriber")
        mode = ExplorationMode.FIRST_PASS
        if self.store.has_recent_exploration(identity, mode, self.max_age_hours):
            logger.info(f"first_pass for {identity} finished while waiting, skipping")
            return
        try:
            await self.run_exploration(identity, mode)
        except (ExplorationFailedError, StoreError) as e:
            # already published as exploration_failed
            logger.error(f"Background first_pass exploration failed for {identity}: {e}")

    async def shutdown(self) -> None:
        """Cancel outstanding background work."""
        tasks = list(self._background) + list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Cancelled {len(tasks)} exploration task(s)")
