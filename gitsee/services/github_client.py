"""
GitHub Metadata Client - Repository metadata from the GitHub REST API.

Every lookup is cached in a TTLCache under "<kind>:<owner>/<name>" so
repeated requests for the same repository stay within rate limits.
"""

import asyncio
import base64
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from gitsee.core.exceptions import MetadataFetchError
from gitsee.models.schemas import RepositoryIdentity
from gitsee.services.cache import TTLCache

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

# (path, category) pairs checked by get_key_files
KEY_FILE_CANDIDATES = [
    ("package.json", "package"),
    ("Cargo.toml", "package"),
    ("go.mod", "package"),
    ("setup.py", "package"),
    ("requirements.txt", "package"),
    ("pyproject.toml", "package"),
    ("pom.xml", "package"),
    ("build.gradle", "package"),
    ("composer.json", "package"),
    ("Gemfile", "package"),
    ("README.md", "docs"),
    ("ARCHITECTURE.md", "docs"),
    ("CONTRIBUTING.md", "docs"),
    ("CLAUDE.md", "docs"),
    ("AGENTS.md", "docs"),
    (".env.example", "config"),
    ("prisma/schema.prisma", "data"),
    ("schema.sql", "data"),
    ("Dockerfile", "build"),
    ("docker-compose.yml", "build"),
    ("docker-compose.yaml", "build"),
    ("Makefile", "build"),
    ("LICENSE", "other"),
    (".github/CODEOWNERS", "other"),
]

# asset directories searched by get_icon
ICON_DIRS = ("public", "assets", "static", "images", "img")

_RESOLUTION_IN_NAME = re.compile(r"(\d+)x\d+")


def _is_icon_name(name: str) -> bool:
    name = name.lower()
    return "favicon" in name or "logo" in name or "icon" in name


def _icon_resolution(name: str) -> int:
    """Rough pixel size guessed from an icon file name."""
    name = name.lower()
    match = _RESOLUTION_IN_NAME.search(name)
    if match:
        return int(match.group(1))
    for size in (512, 256, 192, 180):
        if str(size) in name:
            return size
    if "apple-touch" in name:
        return 180
    if "android-chrome" in name:
        return 192
    if name == "favicon.ico":
        return 64
    if "logo" in name:
        return 100
    return 50


def _age_in_years(created_at: Optional[str]) -> float:
    if not created_at:
        return 0.0
    created = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    days = (datetime.now(timezone.utc) - created).total_seconds() / 86400
    return round(days / 365.25, 1)


class GitHubClient:
    """Async GitHub REST wrapper with TTL caching."""

    def __init__(
        self,
        cache: TTLCache,
        token: Optional[str] = None,
        base_url: str = GITHUB_API_URL,
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.cache = cache
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "gitsee",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._http.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise MetadataFetchError(
                f"GitHub returned {e.response.status_code} for {path}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise MetadataFetchError(f"GitHub request failed for {path}: {e}") from e

    async def _cached(self, kind: str, identity: RepositoryIdentity, fetch) -> Any:
        key = f"{kind}:{identity.key}"
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Using cached {kind} for {identity}")
            return cached
        value = await fetch()
        self.cache.set(key, value)
        return value

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_repo_info(self, identity: RepositoryIdentity) -> Dict[str, Any]:
        async def fetch() -> Dict[str, Any]:
            data = await self._get(f"/repos/{identity.owner}/{identity.name}")
            return {
                "name": data.get("name"),
                "full_name": data.get("full_name"),
                "description": data.get("description"),
                "html_url": data.get("html_url"),
                "default_branch": data.get("default_branch"),
                "language": data.get("language"),
                "stargazers_count": data.get("stargazers_count", 0),
                "forks_count": data.get("forks_count", 0),
                "open_issues_count": data.get("open_issues_count", 0),
                "created_at": data.get("created_at"),
                "updated_at": data.get("updated_at"),
                "owner": {
                    "login": (data.get("owner") or {}).get("login"),
                    "avatar_url": (data.get("owner") or {}).get("avatar_url"),
                },
            }

        return await self._cached("repo", identity, fetch)

    async def get_contributors(
        self, identity: RepositoryIdentity, limit: int = 30
    ) -> List[Dict[str, Any]]:
        async def fetch() -> List[Dict[str, Any]]:
            data = await self._get(
                f"/repos/{identity.owner}/{identity.name}/contributors",
                params={"per_page": limit},
            )
            return [
                {
                    "login": c.get("login"),
                    "avatar_url": c.get("avatar_url"),
                    "html_url": c.get("html_url"),
                    "contributions": c.get("contributions", 0),
                }
                for c in (data or [])
            ]

        return await self._cached("contributors", identity, fetch)

    async def get_key_files(self, identity: RepositoryIdentity) -> List[Dict[str, str]]:
        """Check which well-known project files exist at the repository root."""

        async def check(path: str, category: str) -> Optional[Dict[str, str]]:
            response = await self._http.get(
                f"/repos/{identity.owner}/{identity.name}/contents/{path}"
            )
            if response.status_code == 404:
                return None
            if response.status_code >= 400:
                logger.warning(f"Error checking {path} in {identity}: HTTP {response.status_code}")
                return None
            return {"name": path.rsplit("/", 1)[-1], "path": path, "type": category}

        async def fetch() -> List[Dict[str, str]]:
            try:
                results = await asyncio.gather(
                    *(check(path, category) for path, category in KEY_FILE_CANDIDATES)
                )
            except httpx.HTTPError as e:
                raise MetadataFetchError(f"GitHub request failed for key files: {e}") from e
            found = [r for r in results if r is not None]
            logger.info(f"Found {len(found)} key files in {identity}")
            return found

        return await self._cached("files", identity, fetch)

    async def get_commits(
        self, identity: RepositoryIdentity, limit: int = 50
    ) -> List[Dict[str, Any]]:
        async def fetch() -> List[Dict[str, Any]]:
            data = await self._get(
                f"/repos/{identity.owner}/{identity.name}/commits",
                params={"per_page": limit},
            )
            commits = []
            for c in data or []:
                commit = c.get("commit") or {}
                author = commit.get("author") or {}
                commits.append({
                    "sha": c.get("sha"),
                    "message": commit.get("message"),
                    "author_name": author.get("name"),
                    "date": author.get("date"),
                    "login": (c.get("author") or {}).get("login"),
                    "avatar_url": (c.get("author") or {}).get("avatar_url"),
                })
            return commits

        return await self._cached("commits", identity, fetch)

    async def get_branches(
        self, identity: RepositoryIdentity, limit: int = 100
    ) -> List[Dict[str, Any]]:
        async def fetch() -> List[Dict[str, Any]]:
            data = await self._get(
                f"/repos/{identity.owner}/{identity.name}/branches",
                params={"per_page": limit},
            )
            return [
                {
                    "name": b.get("name"),
                    "sha": (b.get("commit") or {}).get("sha"),
                    "protected": b.get("protected", False),
                }
                for b in (data or [])
            ]

        return await self._cached("branches", identity, fetch)

    async def get_stats(self, identity: RepositoryIdentity) -> Dict[str, Any]:
        """
        Headline numbers: stars, pull requests, commits and age.

        ``total_commits`` is the sum of the top 100 contributors'
        contributions, so it is approximate for large projects.
        """

        async def fetch() -> Dict[str, Any]:
            repo, prs, contributors = await asyncio.gather(
                self._get(f"/repos/{identity.owner}/{identity.name}"),
                self._get(
                    "/search/issues",
                    params={"q": f"repo:{identity.key} type:pr", "per_page": 1},
                ),
                self._get(
                    f"/repos/{identity.owner}/{identity.name}/contributors",
                    params={"per_page": 100},
                ),
            )
            return {
                "stars": repo.get("stargazers_count", 0),
                "total_prs": (prs or {}).get("total_count", 0),
                "total_commits": sum(c.get("contributions", 0) for c in (contributors or [])),
                "age_in_years": _age_in_years(repo.get("created_at")),
            }

        return await self._cached("stats", identity, fetch)

    async def get_icon(self, identity: RepositoryIdentity) -> Optional[str]:
        """
        Best-resolution icon or logo as a data URI, or None.

        Looks at the repository root and the usual asset directories.
        Lookup failures give None; a missing icon is not cached so it is
        retried on the next request.
        """
        cached = self.cache.get(f"icon:{identity.key}")
        if cached is not None:
            return cached

        base = f"/repos/{identity.owner}/{identity.name}/contents"
        try:
            root = await self._get(base)
        except MetadataFetchError as e:
            logger.warning(f"Could not list {identity} for an icon: {e}")
            return None
        if not isinstance(root, list):
            return None

        candidates = [f for f in root if _is_icon_name(f.get("name", ""))]
        for entry in root:
            if entry.get("type") == "dir" and entry.get("name") in ICON_DIRS:
                try:
                    listing = await self._get(f"{base}/{entry['name']}")
                except MetadataFetchError:
                    logger.debug(f"Could not access {entry['name']}/ in {identity}")
                    continue
                if isinstance(listing, list):
                    candidates.extend(f for f in listing if _is_icon_name(f.get("name", "")))

        candidates.sort(key=lambda f: _icon_resolution(f.get("name", "")), reverse=True)
        for candidate in candidates:
            path = candidate.get("path") or candidate.get("name")
            try:
                data = await self._get(f"{base}/{path}")
            except MetadataFetchError:
                continue
            content = data.get("content") if isinstance(data, dict) else None
            if content:
                icon = "data:image/png;base64," + content.replace("\n", "")
                self.cache.set(f"icon:{identity.key}", icon)
                logger.info(f"Loaded icon {path} for {identity}")
                return icon

        logger.info(f"No icon found for {identity}")
        return None

    async def get_file_content(
        self, identity: RepositoryIdentity, path: str
    ) -> Optional[Dict[str, Any]]:
        """Decoded contents of one file, or None for missing paths and directories."""
        path = path.strip("/")
        key = f"file_content:{identity.key}:{path}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        url = f"/repos/{identity.owner}/{identity.name}/contents/{path}"
        try:
            response = await self._http.get(url)
        except httpx.HTTPError as e:
            raise MetadataFetchError(f"GitHub request failed for {url}: {e}") from e
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise MetadataFetchError(f"GitHub returned {response.status_code} for {url}")

        data = response.json()
        if not isinstance(data, dict) or data.get("type") != "file":
            logger.warning(f"{path} in {identity} is not a file")
            return None

        content = data.get("content") or ""
        if data.get("encoding") == "base64":
            content = base64.b64decode(content).decode("utf-8", errors="replace")
        file_content = {
            "name": data.get("name"),
            "path": data.get("path"),
            "content": content,
            "encoding": data.get("encoding") or "utf-8",
            "size": data.get("size", 0),
        }
        self.cache.set(key, file_content)
        return file_content
