"""Integration tests for the HTTP API (gitsee.main)."""

import asyncio
import json
import shutil

import httpx
import pytest
from fastapi.testclient import TestClient

from gitsee.api.routes.gitsee import event_stream
from gitsee.core.config import Settings
from gitsee.core.dependencies import ServiceContainer
from gitsee.main import create_app
from gitsee.models.schemas import ExplorationMode, FirstPassResult
from gitsee.services.cache import TTLCache
from gitsee.services.github_client import GitHubClient
from tests.conftest import ScriptedCompletionClient, final_step, tool_step

GENERAL_ANSWER = json.dumps({
    "summary": "A widget shop",
    "key_files": ["package.json"],
    "features": ["Cart"],
})


def github_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/repos/acme/widgets":
        return httpx.Response(200, json={"name": "widgets", "full_name": "acme/widgets"})
    if path == "/repos/acme/widgets/contributors":
        return httpx.Response(500, json={"message": "Server Error"})
    if path == "/repos/acme/widgets/contents":
        return httpx.Response(200, json=[{"name": "favicon.ico", "path": "favicon.ico", "type": "file"}])
    if path == "/repos/acme/widgets/contents/favicon.ico":
        return httpx.Response(200, json={"type": "file", "content": "ZmF2"})
    if path == "/repos/acme/widgets/contents/README.md":
        return httpx.Response(200, json={
            "type": "file",
            "name": "README.md",
            "path": "README.md",
            "encoding": "base64",
            "content": "IyBXaWRnZXRz",
            "size": 9,
        })
    return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def settings(tmp_path):
    return Settings(
        clone_base_path=str(tmp_path / "clones"),
        data_dir=str(tmp_path / "data"),
        subscriber_wait_seconds=0.05,
        clone_registry_grace_seconds=0.01,
    )


@pytest.fixture
def scripted():
    return ScriptedCompletionClient([
        tool_step("repo_overview"),
        final_step(GENERAL_ANSWER),
    ])


@pytest.fixture
def services(settings, scripted, sample_project, identity):
    cache = TTLCache()
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(github_handler), base_url="https://api.github.test"
    )
    container = ServiceContainer.build(
        settings,
        completion_client=scripted,
        github=GitHubClient(cache, http_client=http),
    )
    # snapshot already on disk, so no git clone runs
    snapshot = container.cloner.get_repo_path(identity)
    shutil.copytree(sample_project, snapshot)
    (snapshot / ".git").mkdir()
    # fresh first_pass, so no background exploration starts
    container.store.store_exploration(
        identity, ExplorationMode.FIRST_PASS, FirstPassResult(summary="known")
    )
    return container


@pytest.fixture
def client(settings, services):
    with TestClient(create_app(settings, services=services)) as test_client:
        yield test_client


# ── Health endpoints ─────────────────────────────────────────────────────────


class TestHealthEndpoint:
    def test_status_ok(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert "version" in data

    def test_ready_lists_checks(self, client):
        resp = client.get("/ready")
        assert resp.status_code == 200
        assert set(resp.json()["checks"]) == {"git", "ripgrep", "llm_configured"}

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/health"


# ── POST /api/gitsee ─────────────────────────────────────────────────────────


class TestGitseeEndpoint:
    def test_missing_data_is_validation_error(self, client):
        resp = client.post("/api/gitsee", json={"owner": "acme", "repo": "widgets", "data": []})
        assert resp.status_code == 422
        body = resp.json()
        assert body["success"] is False
        assert body["error_code"] == "VALIDATION_ERROR"

    def test_blank_owner_rejected(self, client):
        resp = client.post("/api/gitsee", json={"owner": "  ", "repo": "widgets", "data": ["files"]})
        assert resp.status_code == 422

    def test_repo_info(self, client):
        resp = client.post(
            "/api/gitsee", json={"owner": "acme", "repo": "widgets", "data": ["repo_info"]}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["repo"]["full_name"] == "acme/widgets"
        assert "exploration" not in body
        assert body["errors"] == {}

    def test_failing_data_type_reported_separately(self, client):
        resp = client.post(
            "/api/gitsee",
            json={"owner": "acme", "repo": "widgets", "data": ["contributors", "files"]},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert "500" in body["errors"]["contributors"]
        assert body["files"] == []

    def test_unknown_data_type_ignored(self, client):
        resp = client.post(
            "/api/gitsee", json={"owner": "acme", "repo": "widgets", "data": ["bogus"]}
        )
        assert resp.status_code == 200
        assert resp.json()["errors"] == {}

    def test_general_exploration(self, client, services, scripted, identity):
        resp = client.post(
            "/api/gitsee",
            json={
                "owner": "acme",
                "repo": "widgets",
                "data": ["repo_info", "exploration"],
                "explorationMode": "general",
                "explorationPrompt": "What does this do?",
            },
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["exploration"] == {
            "summary": "A widget shop",
            "key_files": ["package.json"],
            "features": ["Cart"],
        }
        assert scripted.calls[0]["prompt"] == "What does this do?"
        assert services.store.get_general_exploration(identity).features == ["Cart"]
        assert services.store.get_basic_data(identity)["repo"]["full_name"] == "acme/widgets"

    def test_stored_exploration_reused(self, client, services, scripted, identity):
        services.store.store_exploration(
            identity, ExplorationMode.FIRST_PASS, FirstPassResult(summary="known", pages=["Home"])
        )
        resp = client.post(
            "/api/gitsee",
            json={
                "owner": "acme",
                "repo": "widgets",
                "data": ["exploration"],
                "explorationMode": "first_pass",
            },
        )
        assert resp.json()["exploration"]["pages"] == ["Home"]
        assert scripted.calls == []

    def test_basic_data_written_whatever_the_order(self, client, services, identity):
        resp = client.post(
            "/api/gitsee",
            json={
                "owner": "acme",
                "repo": "widgets",
                "data": ["exploration", "repo_info"],
                "explorationMode": "general",
            },
        )
        assert resp.status_code == 200
        basic = services.store.get_basic_data(identity)
        assert basic["repo"]["full_name"] == "acme/widgets"

    def test_icon_and_stats(self, client):
        resp = client.post(
            "/api/gitsee", json={"owner": "acme", "repo": "widgets", "data": ["icon", "stats"]}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["icon"] == "data:image/png;base64,ZmF2"
        # stats needs the contributor list, which the mock fails
        assert "500" in body["errors"]["stats"]
        assert "stats" not in body

    def test_file_content(self, client):
        resp = client.post(
            "/api/gitsee",
            json={"owner": "acme", "repo": "widgets", "data": ["file_content"], "filePath": "README.md"},
        )
        assert resp.status_code == 200
        assert resp.json()["file_content"]["content"] == "# Widgets"

    def test_file_content_without_path_skipped(self, client):
        resp = client.post(
            "/api/gitsee", json={"owner": "acme", "repo": "widgets", "data": ["file_content"]}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert "file_content" not in body
        assert body["errors"] == {}


# ── repository URLs ──────────────────────────────────────────────────────────


class TestRepoUrl:
    def test_repo_url_accepted(self, client):
        resp = client.post(
            "/api/gitsee",
            json={"repoUrl": "https://github.com/acme/widgets", "data": ["repo_info"]},
        )
        assert resp.status_code == 200
        assert resp.json()["repo"]["full_name"] == "acme/widgets"

    def test_non_github_url_rejected(self, client):
        resp = client.post(
            "/api/gitsee",
            json={"repoUrl": "https://gitlab.com/acme/widgets", "data": ["repo_info"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_REQUEST"

    def test_repository_required(self, client):
        resp = client.post("/api/gitsee", json={"data": ["repo_info"]})
        assert resp.status_code == 422
        assert resp.json()["error_code"] == "VALIDATION_ERROR"


# ── SSE stream ───────────────────────────────────────────────────────────────


def parse_frame(frame: str) -> dict:
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])


class TestEventStream:
    @pytest.mark.asyncio
    async def test_connected_events_then_close(self, identity):
        queue = asyncio.Queue()
        queue.put_nowait({"type": "clone_started", "owner": "acme", "repo": "widgets"})
        unsubscribed = []

        async def disconnected():
            return True

        frames = [
            parse_frame(f)
            async for f in event_stream(
                identity, queue, lambda: unsubscribed.append(True), 0.01, disconnected
            )
        ]

        assert [f["type"] for f in frames] == ["connected", "clone_started"]
        assert frames[0]["owner"] == "acme"
        assert frames[0]["repo"] == "widgets"
        assert unsubscribed == [True]

    @pytest.mark.asyncio
    async def test_heartbeat_when_quiet(self, identity):
        polls = []

        async def disconnected():
            polls.append(1)
            return len(polls) > 1

        frames = [
            parse_frame(f)
            async for f in event_stream(identity, asyncio.Queue(), lambda: None, 0.01, disconnected)
        ]

        assert [f["type"] for f in frames] == ["connected", "heartbeat"]
        assert isinstance(frames[1]["timestamp"], int)
