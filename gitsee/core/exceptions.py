"""
Domain exceptions shared by the services layer.

HTTP-facing errors live in gitsee.api.middleware.error_handler; these are
raised by services and translated at the edge.
"""

from typing import Optional


class GitseeError(Exception):
    """Base exception for service-level errors."""


class CommandError(GitseeError):
    """An external command failed to start or exited with an error code."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class CommandTimeoutError(CommandError):
    """An external command exceeded its wall-clock timeout and was killed."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Command timed out after {int(timeout * 1000)}ms")


class CloneError(GitseeError):
    """A repository snapshot could not be acquired."""


class ExplorationFailedError(GitseeError):
    """An exploration could not run (for example, the clone failed)."""


class MetadataFetchError(GitseeError):
    """A GitHub metadata request failed."""


class StoreError(GitseeError):
    """Reading or writing the persistent result store failed."""


class CompletionError(GitseeError):
    """The language model completion request failed."""
