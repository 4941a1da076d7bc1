"""Reasoning primitive contract and its OpenAI-backed implementation."""
from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Sequence

from choreo.core.models import ConversationRecord, ToolCall, ToolSpec

if TYPE_CHECKING:
    from choreo.services.llm_pool import LLMPool

logger = logging.getLogger(__name__)

STOP_END_TURN = "end_turn"
STOP_TOOL_USE = "tool_use"
STOP_MAX_TOKENS = "max_tokens"
STOP_SEQUENCE = "stop_sequence"

# Stop reasons after which the turn ends even if tools were requested.
TERMINAL_STOP_REASONS = frozenset({STOP_END_TURN, STOP_SEQUENCE})

_FINISH_REASONS = {
    "stop": STOP_END_TURN,
    "tool_calls": STOP_TOOL_USE,
    "function_call": STOP_TOOL_USE,
    "length": STOP_MAX_TOKENS,
    "content_filter": STOP_SEQUENCE,
}


@dataclass
class ReasoningRequest:
    agent_id: str
    session_id: str
    system_prompt: str
    transcript: Sequence[ConversationRecord]
    tools: Sequence[ToolSpec]
    max_tokens: int = 4096


@dataclass
class ReasoningReply:
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    units_used: int = 0
    stop_reason: str = STOP_END_TURN


class ReasoningPrimitive(abc.ABC):
    """Opaque, non-deterministic step that turns a transcript into a reply."""

    @abc.abstractmethod
    async def complete(self, request: ReasoningRequest) -> ReasoningReply:
        """Produce narrative text and/or tool requests for the transcript."""


class OpenAIReasoner(ReasoningPrimitive):
    """Chat-completions reasoning with function tools, served from an ``LLMPool``."""

    def __init__(self, llm_pool: LLMPool, model_name: str, *, temperature: float = 0.7) -> None:
        self._llm_pool = llm_pool
        self.model_name = model_name
        self.temperature = temperature

    async def complete(self, request: ReasoningRequest) -> ReasoningReply:
        params: Dict[str, Any] = {
            "messages": to_chat_messages(request.system_prompt, request.transcript),
            "max_tokens": request.max_tokens,
            "temperature": self.temperature,
        }
        if request.tools:
            params["tools"] = [to_function_tool(spec) for spec in request.tools]

        async with self._llm_pool.acquire(self.model_name) as client:
            response = await client.chat.completions.create(model=self.model_name, **params)

        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            ToolCall(call_id=tc.id, name=tc.function.name, input=_parse_arguments(tc.function.arguments))
            for tc in (message.tool_calls or [])
        ]
        usage = response.usage
        units = (usage.prompt_tokens + usage.completion_tokens) if usage else 0
        stop_reason = _FINISH_REASONS.get(choice.finish_reason or "stop", STOP_END_TURN)
        return ReasoningReply(text=message.content or "", tool_calls=tool_calls, units_used=units, stop_reason=stop_reason)


def to_chat_messages(system_prompt: str, transcript: Sequence[ConversationRecord]) -> List[Dict[str, Any]]:
    """Replay a transcript in chat-completions format."""
    messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for record in transcript:
        if record.role != "assistant" or not record.tool_calls:
            messages.append({"role": record.role, "content": record.content})
            continue
        messages.append(
            {
                "role": "assistant",
                "content": record.content or None,
                "tool_calls": [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.input)},
                    }
                    for call in record.tool_calls
                ],
            }
        )
        for result in record.tool_results:
            messages.append({"role": "tool", "tool_call_id": result.call_id, "content": result.content})
    return messages


def to_function_tool(spec: ToolSpec) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {"name": spec.name, "description": spec.description, "parameters": spec.parameters},
    }


def _parse_arguments(raw: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}
