"""
Command Runner - Bounded execution of external read-only commands.

Every invocation is capped two ways:
- a wall-clock timeout, after which the process is killed
- an output-size ceiling, checked while output streams in, after which the
  process is killed and the captured text is returned truncated

Ripgrep's exit code 1 ("no matches") is reported as a distinct successful
outcome rather than an error.
"""

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Sequence

from gitsee.core.exceptions import CommandError, CommandTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_OUTPUT = 10_000
SIZE_LIMIT_MARKER = "\n\n[... output truncated due to size limit ...]"

_READ_CHUNK = 4096


@dataclass
class CommandOutput:
    """Successful command outcome."""
    kind: str  # "text" or "no_matches"
    text: str = ""
    truncated: bool = False

    @property
    def has_matches(self) -> bool:
        return self.kind == "text"


def _strip_quotes(arg: str) -> str:
    if len(arg) >= 2 and arg[0] == arg[-1] and arg[0] in ("'", '"'):
        return arg[1:-1]
    return arg


def parse_search_command(command: str) -> list[str]:
    """
    Split a ripgrep command line into argv.

    Quote pairs are stripped from each argument and ``./`` is appended so
    ripgrep always searches the working directory instead of stdin.

    Raises:
        CommandError: If the command does not invoke ``rg``.
    """
    try:
        parts = shlex.split(command, posix=False)
    except ValueError:
        parts = command.split(" ")

    rg_index = next(
        (i for i, part in enumerate(parts) if part == "rg" or part.endswith("/rg")),
        -1,
    )
    if rg_index == -1:
        raise CommandError("Not a ripgrep command")

    args = [_strip_quotes(p) for p in parts[rg_index + 1:] if p]
    return ["rg", *args, "./"]


async def _read_bounded(stream: asyncio.StreamReader, max_output: int) -> tuple[str, bool]:
    """Read a stream until EOF or until more than max_output chars arrive."""
    buffer = bytearray()
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            return buffer.decode("utf-8", errors="replace"), False
        buffer.extend(chunk)
        if len(buffer) > max_output:
            text = buffer.decode("utf-8", errors="replace")
            if len(text) > max_output:
                return text, True


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def run_command(
    args: Sequence[str],
    cwd: str,
    timeout: float = DEFAULT_TIMEOUT,
    max_output: int = DEFAULT_MAX_OUTPUT,
    no_match_codes: Sequence[int] = (),
) -> CommandOutput:
    """
    Run a single command with timeout and output ceiling.

    Args:
        args: Executable and arguments (no shell).
        cwd: Working directory.
        timeout: Wall-clock limit in seconds.
        max_output: Maximum captured stdout characters.
        no_match_codes: Exit codes that mean "ran fine, found nothing".

    Returns:
        CommandOutput with kind "text" or "no_matches".

    Raises:
        CommandTimeoutError: If the command ran longer than ``timeout``.
        CommandError: If the command could not start or exited abnormally.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CommandError(f"Failed to start {args[0]}: {e}") from e

    async def _collect() -> tuple[str, bool, str]:
        stderr_task = asyncio.ensure_future(process.stderr.read())
        try:
            stdout, overflow = await _read_bounded(process.stdout, max_output)
            if overflow:
                return stdout, True, ""
            await process.wait()
            stderr = await stderr_task
            return stdout, False, stderr.decode("utf-8", errors="replace")
        finally:
            if not stderr_task.done():
                stderr_task.cancel()

    try:
        stdout, overflow, stderr = await asyncio.wait_for(_collect(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill(process)
        await process.wait()
        logger.warning(f"Command timed out after {timeout}s: {' '.join(args)}")
        raise CommandTimeoutError(timeout)

    if overflow:
        _kill(process)
        await process.wait()
        return CommandOutput(
            kind="text",
            text=stdout[:max_output] + SIZE_LIMIT_MARKER,
            truncated=True,
        )

    returncode = process.returncode
    if returncode == 0:
        return CommandOutput(kind="text", text=stdout)
    if returncode in no_match_codes:
        return CommandOutput(kind="no_matches")
    raise CommandError(
        f"Command failed with code {returncode}: {stderr}",
        returncode=returncode,
        stderr=stderr,
    )


async def run_search(
    command: str,
    cwd: str,
    timeout: float = DEFAULT_TIMEOUT,
    max_output: int = DEFAULT_MAX_OUTPUT,
) -> CommandOutput:
    """Run a ripgrep command line; exit code 1 maps to ``no_matches``."""
    args = parse_search_command(command)
    return await run_command(
        args, cwd, timeout=timeout, max_output=max_output, no_match_codes=(1,)
    )


async def run_search_args(
    args: Sequence[str],
    cwd: str,
    timeout: float = DEFAULT_TIMEOUT,
    max_output: int = DEFAULT_MAX_OUTPUT,
) -> CommandOutput:
    """
    Run ripgrep with already-split arguments.

    Arguments reach ripgrep unchanged (no quote handling); ``./`` is
    appended as with ``run_search``.
    """
    return await run_command(
        ["rg", *args, "./"], cwd, timeout=timeout, max_output=max_output, no_match_codes=(1,)
    )
