"""Shared test fixtures for the GitSee test suite."""

import json
import shutil
import subprocess
from typing import List, Optional

import pytest

from gitsee.agents.llm import ExplorationStep, ModelStep, ToolCall
from gitsee.models.schemas import RepositoryIdentity

requires_rg = pytest.mark.skipif(shutil.which("rg") is None, reason="ripgrep not installed")
requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


class ScriptedCompletionClient:
    """CompletionClient that replays a fixed list of model turns."""

    def __init__(self, steps: List[ModelStep], error: Optional[Exception] = None):
        self.steps = list(steps)
        self.error = error
        self.calls = []

    async def next_step(self, system, tools, prompt, transcript: List[ExplorationStep]) -> ModelStep:
        self.calls.append({
            "system": system,
            "tools": [t["name"] for t in tools],
            "prompt": prompt,
            "transcript": list(transcript),
        })
        if self.error is not None:
            raise self.error
        if not self.steps:
            return ModelStep(text="")
        return self.steps.pop(0)


def tool_step(name: str, call_id: str = "call_1", text: str = "", **arguments) -> ModelStep:
    """A model turn requesting one tool call."""
    return ModelStep(text=text, tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


def final_step(answer: str, call_id: str = "final") -> ModelStep:
    return tool_step("final_answer", call_id=call_id, answer=answer)


@pytest.fixture
def identity():
    return RepositoryIdentity(owner="acme", name="widgets")


@pytest.fixture
def sample_project(tmp_path):
    """Create a realistic multi-language project tree for testing."""
    root = tmp_path / "project"
    root.mkdir()
    (root / "main.py").write_text("print('hello world')\n")
    (root / "src").mkdir()
    (root / "src" / "utils.py").write_text(
        "def add(a, b):\n    return a + b\n\ndef multiply(a, b):\n    return a * b\n"
    )
    (root / "src" / "server.ts").write_text(
        "import express from 'express';\nconst app = express();\n"
        "const port = process.env.PORT;\n"
    )
    (root / "src" / "components").mkdir()
    (root / "src" / "components" / "button.tsx").write_text(
        "export const Button = () => <button>Click</button>;\n"
    )
    (root / "package.json").write_text(
        json.dumps(
            {
                "name": "widgets",
                "dependencies": {"react": "^18.0.0", "express": "^4.18.0"},
            }
        )
    )
    (root / "README.md").write_text("# Widgets\nA widget shop.\n")
    (root / ".gitignore").write_text("node_modules/\n")

    nm = root / "node_modules"
    nm.mkdir()
    (nm / "lodash.js").write_text("module.exports = {};\n")

    dist = root / "dist"
    dist.mkdir()
    (dist / "bundle.js").write_text("const port = process.env.PORT;\n")

    return root


@pytest.fixture
def git_project(sample_project):
    """sample_project committed into a git repository."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")

    def git(*args):
        subprocess.run(
            ["git", *args],
            cwd=sample_project,
            check=True,
            capture_output=True,
        )

    git("init", "-q")
    git("add", ".")
    git(
        "-c", "user.email=dev@example.com",
        "-c", "user.name=dev",
        "commit", "-q", "-m", "initial",
    )
    return sample_project


@pytest.fixture
def sample_file(tmp_path):
    """Create a single file with 150 lines, one of them very long."""
    lines = [f"line {i}: content for line {i}" for i in range(1, 151)]
    lines[2] = "x" * 500
    f = tmp_path / "sample.py"
    f.write_text("\n".join(lines) + "\n")
    return f
