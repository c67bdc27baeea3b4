"""
File Store - Durable per-repository JSON records.

Layout:
    <data_dir>/<owner>-<name>/basic.json
    <data_dir>/<owner>-<name>/exploration-<mode>.json

Every write replaces the whole file (written to a temp file, then renamed),
so a failed write never leaves a partial record behind.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from gitsee.core.exceptions import StoreError
from gitsee.models.schemas import (
    ExplorationMode,
    ExplorationResult,
    FirstPassResult,
    GeneralResult,
    RepositoryIdentity,
    StoredExploration,
    now_ms,
)

logger = logging.getLogger(__name__)

BASIC_FILE = "basic.json"
EXPLORATION_PREFIX = "exploration-"


def _write_json_atomic(path: Path, payload: Dict[str, Any]) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class FileStore:
    """Stores fetched metadata and exploration results on disk."""

    def __init__(self, data_dir: str = "./data/repos"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _repo_dir(self, identity: RepositoryIdentity) -> Path:
        return self.data_dir / identity.storage_key

    def _ensure_repo_dir(self, identity: RepositoryIdentity) -> Path:
        repo_dir = self._repo_dir(identity)
        repo_dir.mkdir(parents=True, exist_ok=True)
        return repo_dir

    def _exploration_path(self, identity: RepositoryIdentity, mode: ExplorationMode) -> Path:
        return self._repo_dir(identity) / f"{EXPLORATION_PREFIX}{mode.value}.json"

    # =========================================================================
    # WRITES
    # =========================================================================

    def store_basic_data(self, identity: RepositoryIdentity, data: Dict[str, Any]) -> None:
        """Store the latest fetched metadata snapshot."""
        try:
            path = self._ensure_repo_dir(identity) / BASIC_FILE
            enriched = {
                **data,
                "stored_at": datetime.now(timezone.utc).isoformat(),
                "owner": identity.owner,
                "repo": identity.name,
            }
            _write_json_atomic(path, enriched)
        except (OSError, TypeError, ValueError) as e:
            raise StoreError(f"Failed to store basic data for {identity}: {e}") from e
        logger.info(f"Stored basic data for {identity}")

    def store_exploration(
        self,
        identity: RepositoryIdentity,
        mode: ExplorationMode,
        result: ExplorationResult,
    ) -> StoredExploration:
        """Persist an exploration result, replacing any previous one for the mode."""
        stored = StoredExploration(
            mode=mode,
            result=result,
            timestamp=now_ms(),
            owner=identity.owner,
            repo=identity.name,
        )
        try:
            self._ensure_repo_dir(identity)
            _write_json_atomic(
                self._exploration_path(identity, mode), stored.model_dump(mode="json")
            )
        except OSError as e:
            raise StoreError(f"Failed to store {mode.value} exploration for {identity}: {e}") from e
        logger.info(f"Stored {mode.value} exploration for {identity}")
        return stored

    # =========================================================================
    # READS
    # =========================================================================

    def get_basic_data(self, identity: RepositoryIdentity) -> Optional[Dict[str, Any]]:
        path = self._repo_dir(identity) / BASIC_FILE
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error reading basic data for {identity}: {e}")
            return None

    def get_exploration(
        self, identity: RepositoryIdentity, mode: ExplorationMode
    ) -> Optional[StoredExploration]:
        """Load the stored exploration for a mode, or None if absent/unreadable."""
        path = self._exploration_path(identity, mode)
        if not path.exists():
            return None
        try:
            return StoredExploration.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.error(f"Error reading exploration data: {e}")
            return None

    def get_all_explorations(self, identity: RepositoryIdentity) -> List[StoredExploration]:
        if not self._repo_dir(identity).exists():
            return []
        explorations = []
        for mode in ExplorationMode:
            stored = self.get_exploration(identity, mode)
            if stored:
                explorations.append(stored)
        return explorations

    def has_recent_exploration(
        self,
        identity: RepositoryIdentity,
        mode: ExplorationMode,
        max_age_hours: float = 24,
    ) -> bool:
        """True when a stored exploration for the mode is younger than max_age_hours."""
        stored = self.get_exploration(identity, mode)
        if stored is None:
            return False
        age_hours = (now_ms() - stored.timestamp) / (1000 * 60 * 60)
        return age_hours < max_age_hours

    def get_first_pass_exploration(self, identity: RepositoryIdentity) -> Optional[FirstPassResult]:
        stored = self.get_exploration(identity, ExplorationMode.FIRST_PASS)
        return stored.result if stored else None

    def get_general_exploration(self, identity: RepositoryIdentity) -> Optional[GeneralResult]:
        stored = self.get_exploration(identity, ExplorationMode.GENERAL)
        return stored.result if stored else None

    def list_repos(self) -> List[Dict[str, Any]]:
        """
        List stored repositories with their exploration status.

        Owner and name come from the stored records, so sanitised
        directory names never have to be reversed.
        """
        if not self.data_dir.exists():
            return []

        repos = []
        for entry in sorted(self.data_dir.iterdir()):
            if not entry.is_dir():
                continue
            explorations = []
            for mode in ExplorationMode:
                path = entry / f"{EXPLORATION_PREFIX}{mode.value}.json"
                if not path.exists():
                    continue
                try:
                    explorations.append(
                        StoredExploration.model_validate_json(path.read_text(encoding="utf-8"))
                    )
                except (OSError, ValidationError) as e:
                    logger.error(f"Skipping unreadable record {path}: {e}")
            if not explorations:
                continue
            repos.append({
                "owner": explorations[0].owner,
                "repo": explorations[0].repo,
                "explorations": {
                    mode.value: any(e.mode == mode for e in explorations)
                    for mode in ExplorationMode
                },
                "last_explored": max(e.timestamp for e in explorations),
            })
        return repos

    def cleanup_old_explorations(self, max_age_hours: float = 24 * 7) -> int:
        """
        Remove exploration records for repositories not explored recently.

        basic.json is kept. Returns the number of files removed.
        """
        cutoff = now_ms() - max_age_hours * 60 * 60 * 1000
        removed = 0
        for info in self.list_repos():
            if info["last_explored"] >= cutoff:
                continue
            identity = RepositoryIdentity(info["owner"], info["repo"])
            for mode in ExplorationMode:
                path = self._exploration_path(identity, mode)
                if path.exists():
                    path.unlink()
                    removed += 1
                    logger.info(f"Cleaned up old {mode.value} exploration for {identity}")
        return removed
