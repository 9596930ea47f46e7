"""Completion loop: call the model, run memory tools, clean the reply."""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from groq import AsyncGroq

from ..chat.models import Role, Variant
from ..config import LLMConfig
from ..tools import ToolRegistry

logger = logging.getLogger(__name__)

TOOL_USAGE_SECTION = """
## Tool Usage
- Actively try to utilize the memory_store tool to store important information that you'd like to recall later in the long term memory storage, preferably in bullet points. Do not mention the usage of this tool to the user, just use it when needed.
- Actively try to utilize the memory_recall tool to recall information from previous messages and conversations you are not currently aware of. Do not mention this usage of the tool to the user, just use it when needed. If a memory already appears in the "Long Term Memory" section, do not recall it again.

"""

REASONING_SECTION = """
## Reasoning Protocol
Before every reply, think carefully inside <think></think> tags:

1. Analyze the user's last message and identify key elements
2. Consider any restrictions mentioned in the system prompt
3. Review the long term memory that applies
4. Consider the appropriate in-character response
5. Plan a final response that satisfies all of the above

After this reasoning step, provide your in-character response.
"""

_THINK_RE = re.compile(r"<think>((?:.|\n)*?)</think>\n*")
_TRAILING_SPACES_RE = re.compile(r" +\n\n")
_MULTI_SPACE_RE = re.compile(r" {2,}")


class StopReason(Enum):
    """Reasons for stopping the completion loop."""

    COMPLETE = "complete"
    MAX_TURNS = "max_turns"


@dataclass
class CompletionResult:
    """Reply produced by the completion loop."""

    response: str
    stop_reason: StopReason
    turns: int
    tool_calls: list[dict[str, Any]] = field(default_factory=list)


def clean_reply(text: str, force_lowercase: bool = False) -> str:
    """Strip <think> blocks and whitespace artifacts from a model reply."""
    for match in _THINK_RE.finditer(text):
        logger.debug("Thought process: %s", match.group(1))
    text = _THINK_RE.sub("", text)
    text = _TRAILING_SPACES_RE.sub("\n\n", text)
    text = _MULTI_SPACE_RE.sub(" ", text)
    if force_lowercase:
        text = text.lower()
    return text.strip()


class CompletionAgent:
    """Runs one completion, executing memory tool calls in between."""

    def __init__(
        self,
        registry: ToolRegistry,
        config: LLMConfig | None = None,
        groq_client: AsyncGroq | None = None,
        user_id: str | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or LLMConfig()
        self.client = groq_client or AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
        self.user_id = user_id

    @property
    def recalling(self) -> bool:
        """Whether the memory_recall tool is offered to the model."""
        return self.config.use_tools and self.registry.get("memory_recall") is not None

    def _system_prompt(self, base: str) -> str:
        prompt = base
        if self.config.use_tools and len(self.registry):
            prompt += TOOL_USAGE_SECTION
        if self.config.reason:
            prompt += REASONING_SECTION
        return prompt

    def _build_messages(self, context: list[Variant]) -> list[dict[str, Any]]:
        if not context or context[0].role != Role.SYSTEM:
            raise ValueError("Context must start with the system prompt")
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self._system_prompt(context[0].content)}
        ]
        messages.extend(variant.to_message() for variant in context[1:])
        return messages

    async def complete(self, context: list[Variant]) -> CompletionResult:
        """Run the completion for an assembled context.

        Args:
            context: System prompt variant followed by the conversation.

        Returns:
            CompletionResult with the cleaned reply.

        Raises:
            ToolNotFoundError: If the model calls an unknown tool.
        """
        messages = self._build_messages(context)
        tools = self.registry.get_tools_schema() if self.config.use_tools else []
        params = self.config.sampling_params()

        tool_calls_log: list[dict[str, Any]] = []

        for turn in range(self.config.max_turns):
            logger.debug(
                "Completion request for %s: %d messages, %d tools",
                self.user_id,
                len(messages),
                len(tools),
            )
            started = time.monotonic()
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                tools=tools or None,
                tool_choice="auto" if tools else None,
                **params,
            )
            logger.debug(
                "Completion response in %.0f ms", (time.monotonic() - started) * 1000
            )

            assistant_message = response.choices[0].message

            if not assistant_message.tool_calls:
                reply = clean_reply(
                    assistant_message.content or "", self.config.force_lowercase
                )
                return CompletionResult(
                    response=reply,
                    stop_reason=StopReason.COMPLETE,
                    turns=turn + 1,
                    tool_calls=tool_calls_log,
                )

            messages.append({
                "role": "assistant",
                "content": assistant_message.content,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": tc.type,
                        "function": {
                            "name": tc.function.name,
                            "arguments": tc.function.arguments,
                        },
                    }
                    for tc in assistant_message.tool_calls
                ],
            })

            for tool_call in assistant_message.tool_calls:
                tool_name = tool_call.function.name
                try:
                    tool_args = json.loads(tool_call.function.arguments or "{}")
                except json.JSONDecodeError:
                    tool_args = {}

                tool_calls_log.append({"name": tool_name, "args": tool_args})
                result = await self.registry.dispatch(tool_name, tool_args)
                logger.info(
                    "Tool %s for %s: %s",
                    tool_name,
                    self.user_id,
                    "ok" if result.success else result.error,
                )

                messages.append({
                    "role": "tool",
                    "tool_call_id": tool_call.id,
                    "content": result.to_content(tool_name),
                })

        logger.warning("Completion for %s hit max turns (%d)", self.user_id, self.config.max_turns)
        return CompletionResult(
            response="",
            stop_reason=StopReason.MAX_TURNS,
            turns=self.config.max_turns,
            tool_calls=tool_calls_log,
        )
