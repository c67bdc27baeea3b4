"""
Code Navigator Service - Read-only inspection tools over a local snapshot.

Provides the three operations an exploration session may use:
- repo_overview: file tree of tracked files, limited in depth
- file_summary: the first N lines of one file
- fulltext_search: bounded ripgrep search

Every tool returns a ToolOutput whose ``kind`` tells the caller what
happened, so callers never have to sniff the text.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from gitsee.core.exceptions import CommandError, CommandTimeoutError
from gitsee.services.command_runner import (
    SIZE_LIMIT_MARKER,
    run_command,
    run_search_args,
)

logger = logging.getLogger(__name__)


# Directories to always skip during traversal
SKIP_DIRS = {
    ".git", "node_modules", "__pycache__", ".venv", "venv",
    "dist", "build", ".next", "target", ".tox", ".mypy_cache",
    ".pytest_cache", ".ruff_cache", "vendor", "bower_components",
    ".gradle", ".idea", ".vs", ".vscode", "coverage", ".nyc_output",
}

OVERVIEW_DEPTH = 3
MAX_LINE_LENGTH = 200
DEFAULT_FILE_LINES = 40
SEARCH_TIMEOUT = 5.0
SEARCH_MAX_OUTPUT = 10_000
SEARCH_TRUNCATION_MARKER = "\n\n[... output truncated to 10,000 characters ...]"

NOT_CLONED = "Repository not cloned yet"


@dataclass
class ToolOutput:
    """
    Result of an inspection tool.

    kind is one of: text, not_found, no_matches, timed_out, unavailable, error.
    """
    kind: str
    text: str

    @property
    def ok(self) -> bool:
        return self.kind in ("text", "no_matches")


@dataclass
class TreeNode:
    """A directory or file in the overview tree."""
    name: str
    children: Dict[str, "TreeNode"] = field(default_factory=dict)

    @property
    def is_dir(self) -> bool:
        return bool(self.children)


def _should_skip(name: str) -> bool:
    """Check if a directory should be skipped."""
    if name in SKIP_DIRS:
        return True
    if name.endswith(".egg-info"):
        return True
    return False


def _snapshot_missing(repo_path: Optional[str]) -> Optional[ToolOutput]:
    if not repo_path:
        return ToolOutput("unavailable", "No repository path provided")
    if not os.path.isdir(repo_path):
        return ToolOutput("unavailable", NOT_CLONED)
    return None


# =============================================================================
# OVERVIEW
# =============================================================================


def build_tree(paths: List[str]) -> TreeNode:
    """Build a nested tree from slash-separated relative file paths."""
    root = TreeNode(name=".")
    for rel_path in paths:
        node = root
        for part in rel_path.strip("/").split("/"):
            if not part:
                continue
            node = node.children.setdefault(part, TreeNode(name=part))
    return root


def format_tree(node: TreeNode, depth: int = OVERVIEW_DEPTH, prefix: str = "") -> str:
    """Format a tree with ``|--`` connectors, descending at most depth levels."""
    lines = []
    entries = sorted(node.children.values(), key=lambda n: (not n.is_dir, n.name))
    for i, entry in enumerate(entries):
        is_last = i == len(entries) - 1
        connector = "`-- " if is_last else "|-- "
        child_prefix = "    " if is_last else "|   "

        if entry.is_dir:
            lines.append(f"{prefix}{connector}{entry.name}/")
            if depth > 1:
                subtree = format_tree(entry, depth - 1, prefix + child_prefix)
                if subtree:
                    lines.append(subtree)
        else:
            lines.append(f"{prefix}{connector}{entry.name}")

    return "\n".join(lines)


def _count(node: TreeNode) -> tuple[int, int]:
    dirs = files = 0
    for child in node.children.values():
        if child.is_dir:
            dirs += 1
            d, f = _count(child)
            dirs += d
            files += f
        else:
            files += 1
    return dirs, files


def _walk_files(repo_path: str) -> List[str]:
    """Filesystem fallback for listing files when git is unavailable."""
    paths = []
    for root, dirs, files in os.walk(repo_path):
        dirs[:] = sorted(d for d in dirs if not _should_skip(d))
        for filename in sorted(files):
            rel = os.path.relpath(os.path.join(root, filename), repo_path)
            paths.append(rel.replace(os.sep, "/"))
    return paths


async def _tracked_files(repo_path: str) -> List[str]:
    try:
        output = await run_command(
            ["git", "ls-tree", "-r", "--name-only", "HEAD"],
            repo_path,
            max_output=5_000_000,
        )
        return [line for line in output.text.splitlines() if line.strip()]
    except CommandError as e:
        logger.debug(f"git ls-tree unavailable for {repo_path}, walking files: {e}")
        return _walk_files(repo_path)


async def repo_overview(repo_path: Optional[str], depth: int = OVERVIEW_DEPTH) -> ToolOutput:
    """
    File tree of the snapshot, limited to ``depth`` levels.

    Returns an ``unavailable`` result when the snapshot does not exist yet.
    """
    missing = _snapshot_missing(repo_path)
    if missing:
        return missing

    try:
        paths = await _tracked_files(repo_path)
    except OSError as e:
        return ToolOutput("error", f"Error getting repo map: {e}")

    tree = build_tree(paths)
    dirs, files = _count(tree)
    rendered = format_tree(tree, depth=depth)
    text = f".\n{rendered}\n\n{dirs} directories, {files} files" if rendered else ".\n\n0 directories, 0 files"
    return ToolOutput("text", text)


# =============================================================================
# FILE EXCERPT
# =============================================================================


def _resolve_inside(repo_path: str, file_path: str) -> Optional[Path]:
    root = Path(repo_path).resolve()
    candidate = (root / file_path.lstrip("/")).resolve()
    if candidate != root and root not in candidate.parents:
        return None
    return candidate


def file_summary(
    file_path: str,
    repo_path: Optional[str],
    lines_limit: int = DEFAULT_FILE_LINES,
) -> ToolOutput:
    """
    First ``lines_limit`` lines of a file, each cut to 200 characters.

    Missing paths (and paths outside the snapshot) give a ``not_found`` result.
    """
    if not repo_path:
        return ToolOutput("unavailable", "No repository path provided")

    full_path = _resolve_inside(repo_path, file_path)
    if full_path is None or not full_path.is_file():
        return ToolOutput("not_found", "File not found")

    lines = []
    try:
        with open(full_path, "r", encoding="utf-8", errors="replace") as f:
            for i, line in enumerate(f):
                if i >= (lines_limit or DEFAULT_FILE_LINES):
                    break
                line = line.rstrip("\n")
                if len(line) > MAX_LINE_LENGTH:
                    line = line[:MAX_LINE_LENGTH] + "..."
                lines.append(line)
    except OSError as e:
        return ToolOutput("error", f"Error reading file: {e}")

    return ToolOutput("text", "\n".join(lines))


# =============================================================================
# SEARCH
# =============================================================================


def _search_args(query: str, use_gitignore: bool = True) -> List[str]:
    args = ["--glob", "!dist"]
    if use_gitignore:
        args += ["--ignore-file", ".gitignore"]
    args += ["-C", "2", "-n", "--max-count", "10", "--max-columns", "200"]
    # -e keeps queries such as "-webkit-box" from being read as flags
    return args + ["-e", query]


async def fulltext_search(
    query: str,
    repo_path: Optional[str],
    timeout: float = SEARCH_TIMEOUT,
    max_output: int = SEARCH_MAX_OUTPUT,
) -> ToolOutput:
    """
    Search the snapshot for a term with ripgrep.

    Zero matches give a ``no_matches`` result, distinct from failures.
    """
    missing = _snapshot_missing(repo_path)
    if missing:
        return missing

    args = _search_args(query, os.path.isfile(os.path.join(repo_path, ".gitignore")))
    try:
        output = await run_search_args(args, repo_path, timeout=timeout, max_output=max_output)
    except CommandTimeoutError as e:
        return ToolOutput("timed_out", f"Error searching: {e}")
    except CommandError as e:
        return ToolOutput("error", f"Error searching: {e}")

    if not output.has_matches:
        return ToolOutput("no_matches", f'No matches found for "{query}"')

    if output.truncated:
        return ToolOutput("text", output.text[: -len(SIZE_LIMIT_MARKER)] + SEARCH_TRUNCATION_MARKER)
    return ToolOutput("text", output.text)
