"""
Core Module - Configuration, exceptions and dependency injection.
"""

from gitsee.core.config import Settings, get_settings
from gitsee.core.exceptions import (
    CloneError,
    CommandError,
    CommandTimeoutError,
    CompletionError,
    ExplorationFailedError,
    GitseeError,
    MetadataFetchError,
    StoreError,
)

__all__ = [
    "Settings",
    "get_settings",
    "GitseeError",
    "CommandError",
    "CommandTimeoutError",
    "CloneError",
    "CompletionError",
    "ExplorationFailedError",
    "MetadataFetchError",
    "StoreError",
]
