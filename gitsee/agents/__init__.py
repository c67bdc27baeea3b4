"""
Exploration Agent
=================

A single tool-calling loop that explores a local repository snapshot:

    prompt ──► model turn ──► inspection tools ──► observations ──┐
                  ▲                                               │
                  └───────────────────────────────────────────────┘
                        ... until final_answer is called

Modes (first_pass, general, services) choose the system prompt, the
final-answer format, the excerpt size and which tools are offered.

USAGE:
------
    from gitsee.agents import RepoExplorer, AnthropicCompletionClient

    explorer = RepoExplorer(AnthropicCompletionClient(api_key=key))
    result = await explorer.explore(
        "What are the key features?", repo_path, ExplorationMode.GENERAL
    )
"""

from gitsee.agents.llm import (
    AnthropicCompletionClient,
    CompletionClient,
    ExplorationStep,
    ModelStep,
    ToolCall,
)
from gitsee.agents.modes import MODE_CONFIGS, ModeConfig, get_mode_config
from gitsee.agents.explorer import (
    RepoExplorer,
    SessionOutcome,
    SessionState,
    parse_exploration_result,
)

__all__ = [
    "AnthropicCompletionClient",
    "CompletionClient",
    "ExplorationStep",
    "ModelStep",
    "ToolCall",
    "MODE_CONFIGS",
    "ModeConfig",
    "get_mode_config",
    "RepoExplorer",
    "SessionOutcome",
    "SessionState",
    "parse_exploration_result",
]
