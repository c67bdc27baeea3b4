"""
Completion Client - One tool-calling model turn at a time.

The exploration loop only depends on the CompletionClient protocol:
given the system instruction, the tool definitions, the user prompt and
the turns so far, produce the model's next turn. AnthropicCompletionClient
implements it on the Anthropic Messages API with tool-use content blocks.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import anthropic

from gitsee.core.exceptions import CompletionError

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelStep:
    """One model turn: free text plus zero or more tool calls."""
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    stop_reason: Optional[str] = None


@dataclass
class ExplorationStep:
    """
    A completed turn of an exploration session.

    observations maps each tool call id to the text returned to the model.
    """
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    observations: Dict[str, str] = field(default_factory=dict)


class CompletionClient(Protocol):
    async def next_step(
        self,
        system: str,
        tools: List[Dict[str, Any]],
        prompt: str,
        transcript: List[ExplorationStep],
    ) -> ModelStep:
        ...


def build_messages(prompt: str, transcript: List[ExplorationStep]) -> List[Dict[str, Any]]:
    """Render a prompt and transcript as Messages API conversation turns."""
    messages: List[Dict[str, Any]] = [{"role": "user", "content": prompt}]

    for step in transcript:
        content: List[Dict[str, Any]] = []
        if step.text:
            content.append({"type": "text", "text": step.text})
        for call in step.tool_calls:
            content.append({
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": call.arguments,
            })
        if not content:
            continue
        messages.append({"role": "assistant", "content": content})

        if step.tool_calls:
            messages.append({
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": call.id,
                        "content": step.observations.get(call.id, ""),
                    }
                    for call in step.tool_calls
                ],
            })

    return messages


class AnthropicCompletionClient:
    """
    CompletionClient backed by the Anthropic Messages API.

    The SDK client is created on first use so the service can start
    without an API key configured.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-5",
        max_tokens: int = 4096,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self._client: Optional[anthropic.AsyncAnthropic] = None

    @property
    def client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            try:
                self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
            except anthropic.AnthropicError as e:
                raise CompletionError(f"Anthropic client unavailable: {e}") from e
        return self._client

    async def next_step(
        self,
        system: str,
        tools: List[Dict[str, Any]],
        prompt: str,
        transcript: List[ExplorationStep],
    ) -> ModelStep:
        messages = build_messages(prompt, transcript)
        logger.debug(f"Calling {self.model} with {len(messages)} messages")

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                tools=tools,
                messages=messages,
            )
        except anthropic.APIError as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        texts = []
        calls = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {})))

        return ModelStep(
            text="\n".join(t for t in texts if t).strip(),
            tool_calls=calls,
            stop_reason=response.stop_reason,
        )
