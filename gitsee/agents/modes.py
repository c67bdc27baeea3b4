"""
Exploration modes and their configuration.

Every ExplorationMode member has exactly one ModeConfig; a new mode cannot
be added without choosing its prompts, excerpt size and tool set.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Mapping

from gitsee.agents import prompts
from gitsee.models.schemas import ExplorationMode

REPO_OVERVIEW = "repo_overview"
FILE_SUMMARY = "file_summary"
FULLTEXT_SEARCH = "fulltext_search"
FINAL_ANSWER = "final_answer"

ALL_TOOLS = frozenset({REPO_OVERVIEW, FILE_SUMMARY, FULLTEXT_SEARCH})


@dataclass(frozen=True)
class ModeConfig:
    """Prompts, excerpt size and inspection tools for one mode."""
    system: str
    final_answer_description: str
    file_lines: int
    tools: FrozenSet[str]
    default_prompt: str


MODE_CONFIGS: Mapping[ExplorationMode, ModeConfig] = MappingProxyType({
    ExplorationMode.FIRST_PASS: ModeConfig(
        system=prompts.FIRST_PASS_EXPLORER,
        final_answer_description=prompts.FIRST_PASS_FINAL_ANSWER,
        file_lines=100,
        tools=frozenset({REPO_OVERVIEW, FILE_SUMMARY}),
        default_prompt="Analyze this repository and provide a comprehensive overview",
    ),
    ExplorationMode.GENERAL: ModeConfig(
        system=prompts.GENERAL_EXPLORER,
        final_answer_description=prompts.GENERAL_FINAL_ANSWER,
        file_lines=40,
        tools=ALL_TOOLS,
        default_prompt="What are the key features and components of this codebase?",
    ),
    ExplorationMode.SERVICES: ModeConfig(
        system=prompts.SERVICES_EXPLORER,
        final_answer_description=prompts.SERVICES_FINAL_ANSWER,
        file_lines=40,
        tools=ALL_TOOLS,
        default_prompt="How do I set up this project?",
    ),
})


def get_mode_config(mode: ExplorationMode) -> ModeConfig:
    return MODE_CONFIGS[ExplorationMode(mode)]
