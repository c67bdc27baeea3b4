"""
Repository Explorer - Tool-calling exploration loop.

FLOW:
=====
1. Build the tool set for the mode (final_answer is always included)
2. Ask the model for its next turn
3. Execute each requested inspection tool, feed observations back
4. Stop when final_answer is called, when a turn requests no tools,
   or when the step budget runs out
5. Extract the answer (final_answer input, else last reasoning text)

Tool failures become observation text and never abort the session.
Completion failures end the session in the ERROR state.
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from gitsee.agents import prompts
from gitsee.agents.llm import CompletionClient, ExplorationStep, ToolCall
from gitsee.agents.modes import (
    FILE_SUMMARY,
    FINAL_ANSWER,
    FULLTEXT_SEARCH,
    REPO_OVERVIEW,
    ModeConfig,
    get_mode_config,
)
from gitsee.core.exceptions import CompletionError
from gitsee.models.schemas import (
    RESULT_MODELS,
    ExplorationMode,
    ExplorationResult,
    ServicesResult,
)
from gitsee.services import navigator
from gitsee.services.navigator import ToolOutput

logger = logging.getLogger(__name__)

FALLBACK_NOTE = (
    "(Note: Model did not invoke final_answer tool; using last reasoning text as answer.)"
)
EMPTY_ANSWER_SUMMARY = "No answer was produced by the exploration session."

StepCallback = Callable[[ToolCall], None]


class SessionState(str, Enum):
    """Lifecycle of one exploration session."""
    AWAITING_SNAPSHOT = "awaiting_snapshot"
    RUNNING = "running"
    SUCCESS = "success"
    NO_ANSWER_FALLBACK = "no_answer_fallback"
    ERROR = "error"


@dataclass
class SessionOutcome:
    """Terminal state, raw answer and transcript of a session."""
    mode: ExplorationMode
    state: SessionState = SessionState.AWAITING_SNAPSHOT
    answer: str = ""
    steps: List[ExplorationStep] = field(default_factory=list)
    error: Optional[str] = None
    duration_ms: int = 0


# =============================================================================
# TOOL DEFINITIONS
# =============================================================================


_TOOL_SPECS: Dict[str, Dict[str, Any]] = {
    REPO_OVERVIEW: {
        "name": REPO_OVERVIEW,
        "description": prompts.REPO_OVERVIEW_DESCRIPTION,
        "input_schema": {"type": "object", "properties": {}},
    },
    FILE_SUMMARY: {
        "name": FILE_SUMMARY,
        "description": prompts.FILE_SUMMARY_DESCRIPTION,
        "input_schema": {
            "type": "object",
            "properties": {
                "file_path": {
                    "type": "string",
                    "description": "Path to the file to summarize",
                },
                "hypothesis": {
                    "type": "string",
                    "description": (
                        "What you think this file might contain or handle, "
                        "based on its name/location"
                    ),
                },
            },
            "required": ["file_path", "hypothesis"],
        },
    },
    FULLTEXT_SEARCH: {
        "name": FULLTEXT_SEARCH,
        "description": prompts.FULLTEXT_SEARCH_DESCRIPTION,
        "input_schema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The term to search for"},
            },
            "required": ["query"],
        },
    },
}

_TOOL_ORDER = (REPO_OVERVIEW, FILE_SUMMARY, FULLTEXT_SEARCH)


def tool_definitions(config: ModeConfig) -> List[Dict[str, Any]]:
    """Tool definitions offered to the model for a mode."""
    tools = [_TOOL_SPECS[name] for name in _TOOL_ORDER if name in config.tools]
    tools.append({
        "name": FINAL_ANSWER,
        "description": config.final_answer_description,
        "input_schema": {
            "type": "object",
            "properties": {"answer": {"type": "string"}},
            "required": ["answer"],
        },
    })
    return tools


# =============================================================================
# ANSWER EXTRACTION
# =============================================================================


def extract_answer(steps: List[ExplorationStep]) -> tuple[str, bool]:
    """
    Pick the raw answer from a transcript.

    Returns:
        (answer, used_fallback). The final_answer input of the latest turn
        that invoked it wins; otherwise the last non-empty reasoning text
        with a fallback note; otherwise the empty string.
    """
    for step in reversed(steps):
        for call in step.tool_calls:
            if call.name == FINAL_ANSWER:
                return str(call.arguments.get("answer", "")), False

    last_text = ""
    for step in steps:
        if step.text and step.text.strip():
            last_text = step.text.strip()

    if last_text:
        logger.warning("No final_answer tool call detected; falling back to last reasoning text.")
        return f"{last_text}\n\n{FALLBACK_NOTE}", True
    return "", False


_FENCED_JSON = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL)


def _extract_json(raw: str) -> Optional[Dict[str, Any]]:
    candidates = [raw.strip()]
    candidates.extend(m.group(1).strip() for m in _FENCED_JSON.finditer(raw))
    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        candidates.append(raw[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


_TITLED_FILE = re.compile(
    r"^[ \t#*>`-]*([\w][\w.\-/]*|\.[\w.\-]+)[ \t*`:]*\n+[ \t]*```[^\n]*\n(.*?)```",
    re.MULTILINE | re.DOTALL,
)


def parse_files_contents(text: str) -> Dict[str, str]:
    """
    Split an answer made of titled fenced files into {title: content}.

    A title is the line directly above a fenced block, with markdown
    decoration (#, *, backticks, trailing colon) removed.
    """
    files = {}
    for match in _TITLED_FILE.finditer(text):
        files[match.group(1).strip()] = match.group(2).rstrip()
    return files


def parse_exploration_result(raw: str, mode: ExplorationMode) -> ExplorationResult:
    """
    Convert a raw answer into the mode's result type.

    Unparseable answers degrade to ``summary=raw`` with empty lists, and the
    summary is never empty.
    """
    mode = ExplorationMode(mode)
    model = RESULT_MODELS[mode]

    if not raw or not raw.strip():
        return model(summary=EMPTY_ANSWER_SUMMARY)

    if mode == ExplorationMode.SERVICES:
        files = parse_files_contents(raw)
        return ServicesResult(
            summary=raw,
            pm2_config=files.get("pm2.config.js", ""),
            env_file=files.get(".env", ""),
            docker_compose=files.get("docker-compose.yml", files.get("docker-compose.yaml", "")),
        )

    data = _extract_json(raw)
    if data is not None:
        try:
            result = model.model_validate(data)
            if result.summary.strip():
                return result
        except ValidationError as e:
            logger.warning(f"Answer did not match the {mode.value} result shape: {e}")
    else:
        logger.warning(f"Answer for {mode.value} exploration is not JSON; using raw text")

    return model(summary=raw)


# =============================================================================
# EXPLORER
# =============================================================================


class RepoExplorer:
    """
    Drives a model over the inspection tools of one snapshot.

    Usage:
        explorer = RepoExplorer(AnthropicCompletionClient(api_key=...))
        result = await explorer.explore(prompt, "/tmp/gitsee/acme/widgets", ExplorationMode.GENERAL)
    """

    def __init__(
        self,
        client: CompletionClient,
        max_steps: int = 25,
        search_timeout: float = navigator.SEARCH_TIMEOUT,
        search_max_output: int = navigator.SEARCH_MAX_OUTPUT,
    ):
        self.client = client
        self.max_steps = max_steps
        self.search_timeout = search_timeout
        self.search_max_output = search_max_output

    async def run_session(
        self,
        prompt: str,
        repo_path: str,
        mode: ExplorationMode = ExplorationMode.GENERAL,
        on_step: Optional[StepCallback] = None,
    ) -> SessionOutcome:
        """Run one session to a terminal state. Never raises for model errors."""
        mode = ExplorationMode(mode)
        config = get_mode_config(mode)
        tools = tool_definitions(config)
        outcome = SessionOutcome(mode=mode)
        start = time.monotonic()

        outcome.state = SessionState.RUNNING
        try:
            for _ in range(self.max_steps):
                model_step = await self.client.next_step(
                    config.system, tools, prompt, outcome.steps
                )
                step = ExplorationStep(text=model_step.text, tool_calls=model_step.tool_calls)
                outcome.steps.append(step)

                if not step.tool_calls:
                    break

                finished = False
                for call in step.tool_calls:
                    if call.name == FINAL_ANSWER:
                        step.observations[call.id] = str(call.arguments.get("answer", ""))
                        finished = True
                        continue
                    logger.info(f"TOOL CALL: {call.name} : {call.arguments}")
                    if on_step:
                        on_step(call)
                    output = await self._run_tool(call, repo_path, config)
                    step.observations[call.id] = output.text

                if finished:
                    break
            else:
                logger.warning(f"{mode.value} exploration hit the {self.max_steps}-step limit")
        except CompletionError as e:
            outcome.state = SessionState.ERROR
            outcome.error = str(e)
            outcome.duration_ms = int((time.monotonic() - start) * 1000)
            logger.error(f"{mode.value} exploration failed: {e}")
            return outcome

        outcome.answer, used_fallback = extract_answer(outcome.steps)
        outcome.state = (
            SessionState.NO_ANSWER_FALLBACK if used_fallback else SessionState.SUCCESS
        )
        outcome.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"{mode.value} exploration completed in {outcome.duration_ms}ms "
            f"({len(outcome.steps)} steps, {outcome.state.value})"
        )
        return outcome

    async def get_context(
        self,
        prompt: str,
        repo_path: str,
        mode: ExplorationMode = ExplorationMode.GENERAL,
        on_step: Optional[StepCallback] = None,
    ) -> str:
        """
        Run a session and return the raw answer string.

        Raises:
            CompletionError: If the model could not be reached.
        """
        outcome = await self.run_session(prompt, repo_path, mode, on_step)
        if outcome.state == SessionState.ERROR:
            raise CompletionError(outcome.error or "Exploration failed")
        return outcome.answer

    async def explore(
        self,
        prompt: str,
        repo_path: str,
        mode: ExplorationMode = ExplorationMode.GENERAL,
        on_step: Optional[StepCallback] = None,
    ) -> ExplorationResult:
        """Run a session and parse the answer into the mode's result type."""
        mode = ExplorationMode(mode)
        outcome = await self.run_session(prompt, repo_path, mode, on_step)
        if outcome.state == SessionState.ERROR:
            return RESULT_MODELS[mode](summary=f"Exploration failed: {outcome.error}")
        return parse_exploration_result(outcome.answer, mode)

    async def _run_tool(self, call: ToolCall, repo_path: str, config: ModeConfig) -> ToolOutput:
        if call.name not in config.tools:
            return ToolOutput("error", f"Unknown tool: {call.name}")

        args = call.arguments or {}
        try:
            if call.name == REPO_OVERVIEW:
                return await navigator.repo_overview(repo_path)
            if call.name == FILE_SUMMARY:
                file_path = args.get("file_path")
                if not isinstance(file_path, str) or not file_path:
                    return ToolOutput("error", "Bad file path")
                return navigator.file_summary(file_path, repo_path, config.file_lines)
            if call.name == FULLTEXT_SEARCH:
                query = args.get("query")
                if not isinstance(query, str) or not query:
                    return ToolOutput("error", "Search failed: no query given")
                return await navigator.fulltext_search(
                    query,
                    repo_path,
                    timeout=self.search_timeout,
                    max_output=self.search_max_output,
                )
        except Exception as e:
            logger.warning(f"Tool {call.name} raised: {e}")
            return ToolOutput("error", f"Tool {call.name} failed: {e}")

        return ToolOutput("error", f"Unknown tool: {call.name}")
