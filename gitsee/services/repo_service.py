"""
Repository Service - Local snapshots of remote repositories.

Handles:
- Parsing GitHub URLs into repository identities
- Deriving snapshot paths (<base>/<owner>/<name>)
- Shallow, single-branch cloning of the latest revision
- Deduplicating concurrent clone requests through an in-flight registry
- Removing stale snapshots
"""

import asyncio
import logging
import os
import re
import shutil
import stat
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from gitsee.core.exceptions import CloneError
from gitsee.models.schemas import CloneJob, CloneStatus, RepositoryIdentity
from gitsee.services.event_bus import ExplorationEventBus

logger = logging.getLogger(__name__)


def _remove_readonly(func, path, excinfo):
    """Error handler for shutil.rmtree on read-only .git files."""
    os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
    func(path)


def _safe_rmtree(path: Path) -> None:
    """Remove a directory tree, clearing read-only bits as needed."""
    if not path.exists():
        return
    shutil.rmtree(path, onerror=_remove_readonly)


@dataclass
class RepoClonerConfig:
    """Configuration for the clone orchestrator."""
    base_path: str = "/tmp/gitsee"
    clone_timeout_seconds: int = 300
    registry_grace_seconds: float = 5.0


# Regex patterns for GitHub URLs
_GITHUB_PATTERNS = [
    r"https?://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$",
    r"git@github\.com:([^/]+)/([^/]+?)(?:\.git)?$",
    r"https?://github\.com/([^/]+)/([^/]+)/tree/([^/]+)/?",
]


def parse_github_url(url: str) -> RepositoryIdentity:
    """Parse a GitHub URL into a repository identity."""
    url = url.strip()
    for pattern in _GITHUB_PATTERNS:
        match = re.match(pattern, url)
        if match:
            groups = match.groups()
            return RepositoryIdentity(owner=groups[0], name=groups[1].replace(".git", ""))
    raise ValueError(f"Invalid GitHub URL: {url}")


class RepoCloner:
    """
    Clone orchestrator.

    At most one clone job is in flight per identity. Concurrent callers
    await the same job; the registry entry is kept for a short grace
    period after completion so closely spaced duplicates still reuse it.
    """

    def __init__(
        self,
        config: Optional[RepoClonerConfig] = None,
        event_bus: Optional[ExplorationEventBus] = None,
    ):
        self.config = config or RepoClonerConfig()
        self.base_path = Path(self.config.base_path)
        self.event_bus = event_bus
        self._jobs: Dict[str, "asyncio.Task[CloneJob]"] = {}

    # =========================================================================
    # SNAPSHOT STORE
    # =========================================================================

    def get_repo_path(self, identity: RepositoryIdentity) -> Path:
        """Local path for a repository snapshot."""
        return self.base_path / identity.owner / identity.name

    def is_repo_cloned(self, identity: RepositoryIdentity) -> bool:
        """Check whether a valid snapshot exists on disk."""
        repo_path = self.get_repo_path(identity)
        return repo_path.is_dir() and (repo_path / ".git").is_dir()

    def _existing_snapshot(self, identity: RepositoryIdentity) -> CloneJob:
        return CloneJob(
            identity=identity,
            local_path=str(self.get_repo_path(identity)),
            status=CloneStatus.SUCCESS,
        )

    def cleanup_old_repos(self, max_age_hours: float = 24) -> int:
        """
        Remove snapshots not modified within max_age_hours.

        Returns:
            Number of snapshots removed.
        """
        if not self.base_path.exists():
            return 0

        cutoff = time.time() - max_age_hours * 60 * 60
        removed = 0
        try:
            for owner_dir in self.base_path.iterdir():
                if not owner_dir.is_dir():
                    continue
                for repo_dir in owner_dir.iterdir():
                    if repo_dir.is_dir() and repo_dir.stat().st_mtime < cutoff:
                        if RepositoryIdentity(owner_dir.name, repo_dir.name).key in self._jobs:
                            continue
                        logger.info(f"Cleaning up old repo: {owner_dir.name}/{repo_dir.name}")
                        _safe_rmtree(repo_dir)
                        removed += 1
        except OSError as e:
            logger.error(f"Error cleaning up old repos: {e}")
        return removed

    # =========================================================================
    # CLONE ORCHESTRATION
    # =========================================================================

    def clone_in_background(self, identity: RepositoryIdentity) -> "asyncio.Task[CloneJob]":
        """
        Start acquiring a snapshot without waiting for it.

        Failures are logged and published on the event bus; nothing is raised.

        Returns:
            The task handle of the (possibly already running) clone job.
        """
        task = self._get_or_start_job(identity)
        task.add_done_callback(lambda t: self._log_background_outcome(identity, t))
        return task

    def _log_background_outcome(self, identity: RepositoryIdentity, task: "asyncio.Task[CloneJob]") -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background clone failed for {identity}: {error}")
        elif not task.result().success:
            logger.error(f"Background clone failed for {identity}: {task.result().error}")

    async def wait_for_clone(self, identity: RepositoryIdentity) -> CloneJob:
        """
        Return the clone result, starting or joining a clone job as needed.

        An existing snapshot is returned immediately without running git.
        """
        if self.is_repo_cloned(identity):
            return self._existing_snapshot(identity)

        if identity.key in self._jobs:
            logger.info(f"Waiting for ongoing clone of {identity}...")
        else:
            logger.info(f"Starting new clone for {identity}...")
        return await self._get_or_start_job(identity)

    async def get_clone_result(self, identity: RepositoryIdentity) -> Optional[CloneJob]:
        """
        Non-starting lookup of the clone result.

        Returns:
            The known result, the awaited result of an in-flight job, or
            None when no clone was ever started for this identity.
        """
        if self.is_repo_cloned(identity):
            return self._existing_snapshot(identity)

        task = self._jobs.get(identity.key)
        if task is None:
            return None
        try:
            return await asyncio.shield(task)
        except Exception as e:
            return CloneJob(
                identity=identity,
                local_path=str(self.get_repo_path(identity)),
                status=CloneStatus.FAILED,
                error=str(e) or "Unknown error",
            )

    def _get_or_start_job(self, identity: RepositoryIdentity) -> "asyncio.Task[CloneJob]":
        # check-then-insert with no suspension point in between
        key = identity.key
        task = self._jobs.get(key)
        if task is not None:
            return task

        task = asyncio.get_running_loop().create_task(self.clone_repo(identity))
        self._jobs[key] = task
        task.add_done_callback(lambda t: self._schedule_release(key, t))
        return task

    def _schedule_release(self, key: str, task: "asyncio.Task[CloneJob]") -> None:
        def release() -> None:
            if self._jobs.get(key) is task:
                del self._jobs[key]

        asyncio.get_running_loop().call_later(self.config.registry_grace_seconds, release)

    async def clone_repo(self, identity: RepositoryIdentity) -> CloneJob:
        """Clone a repository to <base>/<owner>/<name>."""
        start = time.monotonic()
        repo_path = self.get_repo_path(identity)
        job = CloneJob(identity=identity, local_path=str(repo_path))

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        if self.is_repo_cloned(identity):
            logger.info(f"Repository {identity} already exists at {repo_path}")
            job.status = CloneStatus.SUCCESS
            job.duration_ms = elapsed_ms()
            return job

        logger.info(f"Starting clone of {identity} to {repo_path}")
        if self.event_bus:
            self.event_bus.emit_clone_started(identity)

        try:
            if repo_path.exists():
                # leftover from an interrupted clone
                _safe_rmtree(repo_path)
            repo_path.parent.mkdir(parents=True, exist_ok=True)
            await self._execute_clone(identity.github_url, repo_path)
            job.status = CloneStatus.SUCCESS
            logger.info(f"Successfully cloned {identity} in {elapsed_ms()}ms")
        except (OSError, CloneError) as e:
            job.status = CloneStatus.FAILED
            job.error = str(e)
            logger.error(f"Failed to clone {identity}: {e}")

        job.duration_ms = elapsed_ms()
        if self.event_bus:
            self.event_bus.emit_clone_completed(
                identity, job.success, local_path=job.local_path, error=job.error
            )
        return job

    async def _execute_clone(self, url: str, target: Path) -> None:
        """Execute a shallow, single-branch git clone."""
        cmd = [
            "git", "clone",
            "--depth", "1",
            "--single-branch",
            "--no-tags",
            url, str(target),
        ]

        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise CloneError(f"Failed to start git process: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.config.clone_timeout_seconds,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise CloneError(f"Clone timed out after {self.config.clone_timeout_seconds}s")

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise CloneError(message or f"Git clone exited with code {process.returncode}")
