"""Tests for gitsee.services.exploration_service: clone -> explore -> store -> publish."""

import asyncio
import json
import shutil
from unittest.mock import patch

import pytest

from gitsee.agents.explorer import RepoExplorer
from gitsee.core.exceptions import CloneError, CompletionError, ExplorationFailedError
from gitsee.models.schemas import (
    EventType,
    ExplorationMode,
    GeneralResult,
    FirstPassResult,
    now_ms,
)
from gitsee.services.event_bus import ExplorationEventBus
from gitsee.services.exploration_service import ExplorationService
from gitsee.services.file_store import FileStore
from gitsee.services.repo_service import RepoCloner, RepoClonerConfig
from tests.conftest import ScriptedCompletionClient, final_step, tool_step

GENERAL_ANSWER = json.dumps({
    "summary": "A widget shop",
    "key_files": ["package.json"],
    "features": ["Cart"],
})


def build_service(tmp_path, client, sample_project=None, clone_fails=False):
    bus = ExplorationEventBus()
    cloner = RepoCloner(
        RepoClonerConfig(base_path=str(tmp_path / "clones"), registry_grace_seconds=0.01),
        event_bus=bus,
    )

    async def execute(url, target):
        if clone_fails:
            raise CloneError("Repository not found")
        shutil.copytree(sample_project, target)
        (target / ".git").mkdir()

    service = ExplorationService(
        cloner=cloner,
        explorer=RepoExplorer(client),
        store=FileStore(str(tmp_path / "data")),
        event_bus=bus,
        subscriber_wait_seconds=0.05,
    )
    patcher = patch.object(cloner, "_execute_clone", side_effect=execute)
    return service, patcher


# ── run_exploration ──────────────────────────────────────────────────────────


class TestRunExploration:
    @pytest.mark.asyncio
    async def test_general_exploration_end_to_end(self, tmp_path, sample_project, identity):
        client = ScriptedCompletionClient([
            tool_step("repo_overview"),
            tool_step("file_summary", call_id="c2", file_path="package.json", hypothesis="deps"),
            final_step(GENERAL_ANSWER),
        ])
        service, patcher = build_service(tmp_path, client, sample_project)
        events = []
        service.event_bus.subscribe(identity, events.append)
        started = now_ms()

        with patcher:
            stored = await service.run_exploration(identity, ExplorationMode.GENERAL)

        assert stored.result == GeneralResult(
            summary="A widget shop", key_files=["package.json"], features=["Cart"]
        )
        assert stored.timestamp >= started
        assert service.store.get_exploration(identity, ExplorationMode.GENERAL) == stored

        types = [e.type for e in events]
        assert types[:3] == [
            EventType.CLONE_STARTED,
            EventType.CLONE_COMPLETED,
            EventType.EXPLORATION_STARTED,
        ]
        assert types.count(EventType.EXPLORATION_PROGRESS) == 2
        assert types[-1] == EventType.EXPLORATION_COMPLETED
        assert events[-1].data["result"]["summary"] == "A widget shop"

    @pytest.mark.asyncio
    async def test_default_prompt_for_mode(self, tmp_path, sample_project, identity):
        client = ScriptedCompletionClient([final_step("{}")])
        service, patcher = build_service(tmp_path, client, sample_project)
        with patcher:
            await service.run_exploration(identity, ExplorationMode.FIRST_PASS)
        assert client.calls[0]["prompt"] == (
            "Analyze this repository and provide a comprehensive overview"
        )

    @pytest.mark.asyncio
    async def test_clone_failure(self, tmp_path, identity):
        client = ScriptedCompletionClient([final_step(GENERAL_ANSWER)])
        service, patcher = build_service(tmp_path, client, clone_fails=True)
        events = []
        service.event_bus.subscribe(identity, events.append)

        with patcher, pytest.raises(ExplorationFailedError, match="Clone failed"):
            await service.run_exploration(identity, ExplorationMode.GENERAL)

        assert events[-1].type == EventType.EXPLORATION_FAILED
        assert client.calls == []
        assert service.store.get_exploration(identity, ExplorationMode.GENERAL) is None

    @pytest.mark.asyncio
    async def test_completion_failure_not_stored(self, tmp_path, sample_project, identity):
        client = ScriptedCompletionClient([], error=CompletionError("rate limited"))
        service, patcher = build_service(tmp_path, client, sample_project)

        with patcher, pytest.raises(ExplorationFailedError, match="rate limited"):
            await service.run_exploration(identity, ExplorationMode.GENERAL)

        assert service.store.has_recent_exploration(identity, ExplorationMode.GENERAL) is False

    @pytest.mark.asyncio
    async def test_concurrent_runs_share_session(self, tmp_path, sample_project, identity):
        client = ScriptedCompletionClient([final_step(GENERAL_ANSWER)])
        service, patcher = build_service(tmp_path, client, sample_project)

        with patcher:
            first, second = await asyncio.gather(
                service.run_exploration(identity, ExplorationMode.GENERAL),
                service.run_exploration(identity, ExplorationMode.GENERAL),
            )

        assert first == second
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_different_prompts_run_separately(self, tmp_path, sample_project, identity):
        client = ScriptedCompletionClient([final_step(GENERAL_ANSWER), final_step(GENERAL_ANSWER)])
        service, patcher = build_service(tmp_path, client, sample_project)

        with patcher:
            await asyncio.gather(
                service.run_exploration(identity, ExplorationMode.GENERAL, "How is auth done?"),
                service.run_exploration(identity, ExplorationMode.GENERAL, "Where is the cart?"),
            )

        assert sorted(c["prompt"] for c in client.calls) == [
            "How is auth done?",
            "Where is the cart?",
        ]


# ── get_or_run_exploration ───────────────────────────────────────────────────


class TestGetOrRun:
    @pytest.mark.asyncio
    async def test_fresh_result_reused(self, tmp_path, identity):
        client = ScriptedCompletionClient([])
        service, patcher = build_service(tmp_path, client, clone_fails=True)
        stored = service.store.store_exploration(
            identity, ExplorationMode.GENERAL, GeneralResult(summary="cached")
        )

        with patcher:
            result = await service.get_or_run_exploration(identity, ExplorationMode.GENERAL)

        assert result == stored
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_missing_result_runs(self, tmp_path, sample_project, identity):
        client = ScriptedCompletionClient([final_step(GENERAL_ANSWER)])
        service, patcher = build_service(tmp_path, client, sample_project)
        with patcher:
            result = await service.get_or_run_exploration(identity, ExplorationMode.GENERAL)
        assert result.result.summary == "A widget shop"


# ── background first_pass ────────────────────────────────────────────────────


class TestBackgroundFirstPass:
    @pytest.mark.asyncio
    async def test_fresh_result_during_wait_skips_session(self, tmp_path, sample_project, identity):
        answer = json.dumps({"summary": "Widgets", "pages": ["Home"]})
        client = ScriptedCompletionClient([final_step(answer), final_step(answer)])
        service, patcher = build_service(tmp_path, client, sample_project)
        service.subscriber_wait_seconds = 1.0

        with patcher:
            task = service.start_first_pass_in_background(identity)
            await service.run_exploration(identity, ExplorationMode.FIRST_PASS)
            await task

        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_skipped_when_recent(self, tmp_path, identity):
        service, _ = build_service(tmp_path, ScriptedCompletionClient([]))
        service.store.store_exploration(
            identity, ExplorationMode.FIRST_PASS, FirstPassResult(summary="s")
        )
        assert service.start_first_pass_in_background(identity) is None

    @pytest.mark.asyncio
    async def test_runs_and_stores(self, tmp_path, sample_project, identity):
        answer = json.dumps({"summary": "Widgets", "pages": ["Home"]})
        client = ScriptedCompletionClient([final_step(answer)])
        service, patcher = build_service(tmp_path, client, sample_project)

        with patcher:
            task = service.start_first_pass_in_background(identity)
            assert task is not None
            await task

        stored = service.store.get_first_pass_exploration(identity)
        assert stored.pages == ["Home"]

    @pytest.mark.asyncio
    async def test_failure_is_published_not_raised(self, tmp_path, identity):
        service, patcher = build_service(tmp_path, ScriptedCompletionClient([]), clone_fails=True)
        events = []
        service.event_bus.subscribe(identity, events.append)

        with patcher:
            await service.start_first_pass_in_background(identity)

        assert events[-1].type == EventType.EXPLORATION_FAILED
        assert events[-1].mode == ExplorationMode.FIRST_PASS

    @pytest.mark.asyncio
    async def test_shutdown_cancels(self, tmp_path, identity):
        service, _ = build_service(tmp_path, ScriptedCompletionClient([]))
        service.subscriber_wait_seconds = 10
        task = service.start_first_pass_in_background(identity)
        await asyncio.sleep(0)
        await service.shutdown()
        assert task.cancelled()
