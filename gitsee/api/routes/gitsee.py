"""
GitSee Endpoints - Repository data requests and exploration event streams.

POST /api/gitsee
    Starts the background clone (and a first_pass exploration when no
    recent one is stored), then returns each requested data type.

GET /api/gitsee/events/{owner}/{repo}
    Server-sent events for one repository: a "connected" message, then
    every lifecycle event, with a "heartbeat" after each quiet interval.
"""

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Callable, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from gitsee.api.middleware.error_handler import InvalidRequestError
from gitsee.core.dependencies import ServiceContainer, get_services
from gitsee.core.exceptions import ExplorationFailedError, MetadataFetchError, StoreError
from gitsee.models.requests import DataType, GitseeRequest
from gitsee.models.responses import GitseeResponse
from gitsee.models.schemas import ExplorationMode, RepositoryIdentity, now_ms
from gitsee.services.repo_service import parse_github_url

logger = logging.getLogger(__name__)

router = APIRouter(tags=["GitSee"])


def _identity(owner: str, repo: str) -> RepositoryIdentity:
    try:
        return RepositoryIdentity(owner=owner, name=repo)
    except ValueError as e:
        raise InvalidRequestError(str(e)) from e


def _request_identity(request: GitseeRequest) -> RepositoryIdentity:
    if request.owner and request.repo:
        return _identity(request.owner, request.repo)
    try:
        return parse_github_url(request.repo_url)
    except ValueError as e:
        raise InvalidRequestError(str(e)) from e


# =============================================================================
# DATA REQUESTS
# =============================================================================


@router.post(
    "",
    response_model=GitseeResponse,
    response_model_exclude_none=True,
    summary="Fetch repository data",
    description="Return metadata and exploration results for a repository"
)
async def handle_request(
    request: GitseeRequest,
    services: ServiceContainer = Depends(get_services)
) -> GitseeResponse:
    """
    Process each requested data type independently.

    A failing data type is reported under ``errors`` and the others are
    still returned.
    """
    identity = _request_identity(request)
    started_at = now_ms()

    logger.info(f"Starting background clone for {identity}...")
    services.cloner.clone_in_background(identity)
    services.explorations.start_first_pass_in_background(identity)

    response = GitseeResponse()
    github = services.github
    fresh_exploration = False
    logger.info(f"Processing request for {identity} with data: [{', '.join(request.data)}]")

    for data_type in request.data:
        try:
            if data_type == DataType.REPO_INFO.value:
                response.repo = await github.get_repo_info(identity)

            elif data_type == DataType.CONTRIBUTORS.value:
                response.contributors = await github.get_contributors(identity)

            elif data_type == DataType.FILES.value:
                response.files = await github.get_key_files(identity)

            elif data_type == DataType.ICON.value:
                response.icon = await github.get_icon(identity)

            elif data_type == DataType.STATS.value:
                response.stats = await github.get_stats(identity)

            elif data_type == DataType.COMMITS.value:
                response.commits = await github.get_commits(identity)

            elif data_type == DataType.BRANCHES.value:
                response.branches = await github.get_branches(identity)

            elif data_type == DataType.FILE_CONTENT.value:
                if not request.file_path:
                    logger.warning("File content requested but no filePath provided")
                    continue
                response.file_content = await github.get_file_content(identity, request.file_path)

            elif data_type == DataType.EXPLORATION.value:
                mode = request.exploration_mode or ExplorationMode.GENERAL
                stored = await services.explorations.get_or_run_exploration(
                    identity, mode, request.exploration_prompt
                )
                response.exploration = stored.result.model_dump(mode="json")
                fresh_exploration = stored.timestamp >= started_at

            else:
                logger.warning(f"Unknown data type: {data_type}")

        except (MetadataFetchError, ExplorationFailedError, StoreError) as e:
            logger.error(f"Error processing {data_type} for {identity}: {e}")
            response.errors[data_type] = str(e)

    if fresh_exploration:
        try:
            services.store.store_basic_data(identity, {
                "repo": response.repo,
                "contributors": response.contributors,
                "files": response.files,
            })
        except StoreError as e:
            logger.error(f"Error storing basic data for {identity}: {e}")
            response.errors["basic_data"] = str(e)

    return response


# =============================================================================
# EVENT STREAM
# =============================================================================


def _sse_pack(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def event_stream(
    identity: RepositoryIdentity,
    queue: "asyncio.Queue[Dict[str, Any]]",
    unsubscribe: Callable[[], None],
    heartbeat_seconds: float,
    is_disconnected: Callable[[], Any],
) -> AsyncGenerator[str, None]:
    """Yield SSE frames for one subscriber until the client goes away."""
    try:
        yield _sse_pack({
            "type": "connected",
            "owner": identity.owner,
            "repo": identity.name,
            "timestamp": now_ms(),
        })
        while True:
            try:
                payload = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
                yield _sse_pack(payload)
            except asyncio.TimeoutError:
                if await is_disconnected():
                    break
                yield _sse_pack({"type": "heartbeat", "timestamp": now_ms()})
    finally:
        unsubscribe()
        logger.info(f"SSE client for {identity} disconnected")


@router.get(
    "/events/{owner}/{repo}",
    summary="Exploration events",
    description="Server-sent events for clone and exploration progress"
)
async def exploration_events(
    owner: str,
    repo: str,
    request: Request,
    services: ServiceContainer = Depends(get_services)
) -> StreamingResponse:
    identity = _identity(owner, repo)
    queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    # subscribe before streaming starts so waiting producers see the connection
    unsubscribe = services.event_bus.subscribe(
        identity, lambda event: queue.put_nowait(event.to_wire())
    )
    logger.info(f"SSE client connected for {identity}")

    return StreamingResponse(
        event_stream(
            identity,
            queue,
            unsubscribe,
            services.settings.sse_heartbeat_seconds,
            request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
