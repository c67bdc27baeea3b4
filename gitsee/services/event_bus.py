"""
Exploration Event Bus - Per-repository publish/subscribe for lifecycle events.

Subscribers attach to one repository identity and receive every event
published for it, synchronously and in publish order. Nothing is buffered
for absent subscribers; producers that must not lose their first events
call wait_for_subscriber() before publishing.

The bus is constructed explicitly by the composition root
(gitsee.core.dependencies) and injected where needed.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from gitsee.models.schemas import (
    EventType,
    ExplorationEvent,
    ExplorationMode,
    RepositoryIdentity,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[ExplorationEvent], None]


class ExplorationEventBus:
    """
    Identity-keyed event fan-out.

    Usage:
        bus = ExplorationEventBus()
        unsubscribe = bus.subscribe(identity, handler)
        bus.emit_clone_started(identity)
        unsubscribe()
    """

    def __init__(self):
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._connection_waiters: Dict[str, List[asyncio.Future]] = {}

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(
        self, identity: RepositoryIdentity, handler: EventHandler
    ) -> Callable[[], None]:
        """
        Attach a handler to one repository's events.

        Returns:
            An unsubscribe function; calling it more than once is a no-op.
        """
        key = identity.key
        self._subscribers.setdefault(key, []).append(handler)
        logger.info(f"New subscriber for {key} (total: {self.listener_count(identity)})")

        self._notify_connection(key)

        active = True

        def unsubscribe() -> None:
            nonlocal active
            if not active:
                return
            active = False
            handlers = self._subscribers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._subscribers.pop(key, None)
            logger.info(
                f"Unsubscribed from {key} (remaining: {self.listener_count(identity)})"
            )

        return unsubscribe

    def _notify_connection(self, key: str) -> None:
        for waiter in self._connection_waiters.pop(key, []):
            if not waiter.done():
                waiter.set_result(True)

    async def wait_for_subscriber(
        self, identity: RepositoryIdentity, timeout: float = 5.0
    ) -> bool:
        """
        Wait until at least one subscriber is attached.

        Returns:
            True once a subscriber is attached, False if the timeout elapsed.
        """
        if self.listener_count(identity) > 0:
            return True

        key = identity.key
        waiter = asyncio.get_running_loop().create_future()
        self._connection_waiters.setdefault(key, []).append(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout=timeout)
        except asyncio.TimeoutError:
            logger.info(f"No subscriber for {key} after {timeout}s")
            return False
        finally:
            waiters = self._connection_waiters.get(key)
            if waiters and waiter in waiters:
                waiters.remove(waiter)
                if not waiters:
                    self._connection_waiters.pop(key, None)

    def listener_count(self, identity: RepositoryIdentity) -> int:
        return len(self._subscribers.get(identity.key, []))

    def cleanup_repo(self, identity: RepositoryIdentity) -> None:
        """Drop every subscriber for one repository."""
        self._subscribers.pop(identity.key, None)
        logger.info(f"Cleaned up all listeners for {identity.key}")

    # =========================================================================
    # PUBLISHING
    # =========================================================================

    def publish(self, identity: RepositoryIdentity, event: ExplorationEvent) -> None:
        """Deliver an event to the current subscribers of an identity."""
        for handler in list(self._subscribers.get(identity.key, [])):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler failed for {identity.key}")

    def _emit(
        self,
        identity: RepositoryIdentity,
        event_type: EventType,
        mode: Optional[ExplorationMode] = None,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> ExplorationEvent:
        event = ExplorationEvent(
            type=event_type,
            owner=identity.owner,
            repo=identity.name,
            mode=mode,
            data=data,
            error=error,
        )
        self.publish(identity, event)
        return event

    def emit_clone_started(self, identity: RepositoryIdentity) -> ExplorationEvent:
        logger.debug(f"Emitted clone_started for {identity}")
        return self._emit(identity, EventType.CLONE_STARTED)

    def emit_clone_completed(
        self,
        identity: RepositoryIdentity,
        success: bool,
        local_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ExplorationEvent:
        logger.debug(
            f"Emitted clone_completed for {identity}: {'success' if success else 'failed'}"
        )
        return self._emit(
            identity,
            EventType.CLONE_COMPLETED,
            data={"success": success, "localPath": local_path},
            error=error,
        )

    def emit_exploration_started(
        self, identity: RepositoryIdentity, mode: ExplorationMode
    ) -> ExplorationEvent:
        logger.debug(f"Emitted exploration_started for {identity} ({mode.value})")
        return self._emit(identity, EventType.EXPLORATION_STARTED, mode=mode)

    def emit_exploration_progress(
        self, identity: RepositoryIdentity, mode: ExplorationMode, progress: str
    ) -> ExplorationEvent:
        return self._emit(
            identity,
            EventType.EXPLORATION_PROGRESS,
            mode=mode,
            data={"progress": progress},
        )

    def emit_exploration_completed(
        self, identity: RepositoryIdentity, mode: ExplorationMode, result: Dict[str, Any]
    ) -> ExplorationEvent:
        logger.debug(f"Emitted exploration_completed for {identity} ({mode.value})")
        return self._emit(
            identity,
            EventType.EXPLORATION_COMPLETED,
            mode=mode,
            data={"result": result},
        )

    def emit_exploration_failed(
        self, identity: RepositoryIdentity, mode: ExplorationMode, error: str
    ) -> ExplorationEvent:
        logger.debug(f"Emitted exploration_failed for {identity} ({mode.value}): {error}")
        return self._emit(identity, EventType.EXPLORATION_FAILED, mode=mode, error=error)
