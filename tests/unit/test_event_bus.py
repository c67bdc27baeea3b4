"""Tests for gitsee.services.event_bus: per-repository publish/subscribe."""

import asyncio

import pytest

from gitsee.models.schemas import EventType, ExplorationMode, RepositoryIdentity
from gitsee.services.event_bus import ExplorationEventBus

OTHER = RepositoryIdentity("acme", "gadgets")

# ── subscribe / publish ──────────────────────────────────────────────────────


class TestSubscribe:
    def test_events_delivered_in_order(self, identity):
        bus = ExplorationEventBus()
        received = []
        bus.subscribe(identity, received.append)

        bus.emit_clone_started(identity)
        bus.emit_clone_completed(identity, True, local_path="/tmp/gitsee/acme/widgets")
        bus.emit_exploration_started(identity, ExplorationMode.GENERAL)

        assert [e.type for e in received] == [
            EventType.CLONE_STARTED,
            EventType.CLONE_COMPLETED,
            EventType.EXPLORATION_STARTED,
        ]

    def test_other_repositories_isolated(self, identity):
        bus = ExplorationEventBus()
        received = []
        bus.subscribe(identity, received.append)
        bus.emit_clone_started(OTHER)
        assert received == []

    def test_unsubscribe_stops_delivery(self, identity):
        bus = ExplorationEventBus()
        received = []
        unsubscribe = bus.subscribe(identity, received.append)
        unsubscribe()
        bus.emit_clone_started(identity)
        assert received == []
        assert bus.listener_count(identity) == 0

    def test_unsubscribe_idempotent(self, identity):
        bus = ExplorationEventBus()
        handler = lambda e: None
        unsubscribe = bus.subscribe(identity, handler)
        bus.subscribe(identity, handler)
        unsubscribe()
        unsubscribe()
        assert bus.listener_count(identity) == 1

    def test_failing_handler_isolated(self, identity):
        bus = ExplorationEventBus()
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe(identity, broken)
        bus.subscribe(identity, received.append)
        bus.emit_clone_started(identity)
        assert len(received) == 1

    def test_no_buffering_for_late_subscribers(self, identity):
        bus = ExplorationEventBus()
        bus.emit_clone_started(identity)
        received = []
        bus.subscribe(identity, received.append)
        assert received == []

    def test_cleanup_repo(self, identity):
        bus = ExplorationEventBus()
        bus.subscribe(identity, lambda e: None)
        bus.subscribe(identity, lambda e: None)
        bus.cleanup_repo(identity)
        assert bus.listener_count(identity) == 0


# ── emitters ─────────────────────────────────────────────────────────────────


class TestEmitters:
    def test_completed_payload(self, identity):
        bus = ExplorationEventBus()
        event = bus.emit_exploration_completed(
            identity, ExplorationMode.GENERAL, {"summary": "A widget shop"}
        )
        wire = event.to_wire()
        assert wire["type"] == "exploration_completed"
        assert wire["owner"] == "acme"
        assert wire["repo"] == "widgets"
        assert wire["mode"] == "general"
        assert wire["data"] == {"result": {"summary": "A widget shop"}}
        assert isinstance(wire["timestamp"], int)
        assert "error" not in wire

    def test_failed_payload(self, identity):
        bus = ExplorationEventBus()
        wire = bus.emit_exploration_failed(identity, ExplorationMode.SERVICES, "boom").to_wire()
        assert wire["error"] == "boom"
        assert "data" not in wire

    def test_progress_payload(self, identity):
        bus = ExplorationEventBus()
        event = bus.emit_exploration_progress(identity, ExplorationMode.FIRST_PASS, "repo_overview")
        assert event.data == {"progress": "repo_overview"}


# ── wait_for_subscriber ──────────────────────────────────────────────────────


class TestWaitForSubscriber:
    @pytest.mark.asyncio
    async def test_already_connected(self, identity):
        bus = ExplorationEventBus()
        bus.subscribe(identity, lambda e: None)
        assert await bus.wait_for_subscriber(identity, timeout=0.1) is True

    @pytest.mark.asyncio
    async def test_resolves_on_subscribe(self, identity):
        bus = ExplorationEventBus()

        async def connect_later():
            await asyncio.sleep(0.05)
            bus.subscribe(identity, lambda e: None)

        waiter = asyncio.create_task(bus.wait_for_subscriber(identity, timeout=2.0))
        await connect_later()
        assert await waiter is True

    @pytest.mark.asyncio
    async def test_timeout_returns_false(self, identity):
        bus = ExplorationEventBus()
        assert await bus.wait_for_subscriber(identity, timeout=0.05) is False
        assert bus._connection_waiters == {}
