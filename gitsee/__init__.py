"""
GitSee Exploration Service
==========================

Clones GitHub repositories into local snapshots and runs tool-calling
language-model explorations over them, publishing progress as events
and persisting results per repository and mode.

Components:
- agents: Exploration loop, modes and prompts
- services: Clone orchestrator, command runner, inspection tools,
  event bus, cache and file store
- api: FastAPI endpoints (JSON + server-sent events)
- models: Pydantic data models
- core: Configuration, exceptions and the service container
"""

__version__ = "1.0.0"
