"""Agent actor executing bounded reasoning turns for one role of a session."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from choreo.core.errors import TurnExecutionError
from choreo.core.models import (
    AgentStatus,
    ConversationRecord,
    Role,
    ToolCall,
    ToolOutcome,
    ToolResult,
    ToolSpec,
    TurnResult,
    utcnow,
)

from .reasoning import TERMINAL_STOP_REASONS, ReasoningPrimitive, ReasoningReply, ReasoningRequest

logger = logging.getLogger(__name__)

# (agent_id, session_id, tool_name, tool_input) -> outcome
TurnToolHandler = Callable[[str, str, str, Dict[str, Any]], Awaitable[ToolOutcome]]

DEFAULT_MAX_STEPS = 16


class TurnPhase(Enum):
    AWAITING_PRIMITIVE = auto()
    AWAITING_TOOL_RESULTS = auto()
    FINISHED = auto()


@dataclass
class AgentDescriptor:
    """Descriptor the orchestrator exposes for each actor."""

    agent_id: str
    session_id: str
    role: Role
    index: int
    status: AgentStatus = AgentStatus.INITIALIZING
    turns_completed: int = 0
    resource_used: int = 0
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)


def make_agent_id(session_id: str, role_name: str, index: int) -> str:
    slug = "-".join(role_name.lower().split())
    return f"agent-{session_id}-{slug}-{index}"


class AgentActor:
    """Owns one role's conversation and runs its turns strictly one at a time."""

    def __init__(
        self,
        descriptor: AgentDescriptor,
        *,
        system_prompt: str,
        reasoner: ReasoningPrimitive,
        tool_handler: TurnToolHandler,
        tools: Sequence[ToolSpec] = (),
        max_tokens_per_turn: int = 4096,
        max_steps_per_turn: int = DEFAULT_MAX_STEPS,
    ) -> None:
        self.descriptor = descriptor
        self.system_prompt = system_prompt
        self.tools = tuple(tools)
        self.history: List[ConversationRecord] = []
        self.last_response: str = ""
        self._reasoner = reasoner
        self._tool_handler = tool_handler
        self._max_tokens = max_tokens_per_turn
        self._max_steps = max_steps_per_turn
        self._released = False
        self.descriptor.status = AgentStatus.IDLE

    @property
    def agent_id(self) -> str:
        return self.descriptor.agent_id

    @property
    def session_id(self) -> str:
        return self.descriptor.session_id

    @property
    def role(self) -> Role:
        return self.descriptor.role

    @property
    def status(self) -> AgentStatus:
        return self.descriptor.status

    @status.setter
    def status(self, value: AgentStatus) -> None:
        self.descriptor.status = value
        self.descriptor.last_activity_at = utcnow()

    @property
    def turns_completed(self) -> int:
        return self.descriptor.turns_completed

    @property
    def resource_used(self) -> int:
        return self.descriptor.resource_used

    @property
    def is_released(self) -> bool:
        return self._released or self.status is AgentStatus.ERROR

    async def execute_turn(self, input_text: str) -> TurnResult:
        """Run one turn: reason, execute requested tools, repeat until a final reply."""
        self.status = AgentStatus.THINKING
        self.history.append(ConversationRecord(role="user", content=input_text))
        transcript: List[ConversationRecord] = list(self.history)

        calls: List[ToolCall] = []
        results: List[ToolResult] = []
        used = 0
        response = ""
        steps = 0
        reply = ReasoningReply()
        phase = TurnPhase.AWAITING_PRIMITIVE

        while phase is not TurnPhase.FINISHED:
            if phase is TurnPhase.AWAITING_PRIMITIVE:
                if steps >= self._max_steps:
                    logger.warning("%s hit the step limit of %d within one turn", self.agent_id, self._max_steps)
                    phase = TurnPhase.FINISHED
                    continue
                reply = await self._invoke_primitive(transcript)
                steps += 1
                used += reply.units_used
                self.descriptor.resource_used += reply.units_used
                response = reply.text
                phase = TurnPhase.AWAITING_TOOL_RESULTS if reply.tool_calls else TurnPhase.FINISHED

            elif phase is TurnPhase.AWAITING_TOOL_RESULTS:
                self.status = AgentStatus.EXECUTING_TOOL
                step_results = [await self._run_tool(call) for call in reply.tool_calls]
                calls.extend(reply.tool_calls)
                results.extend(step_results)
                transcript.append(
                    ConversationRecord(
                        role="assistant",
                        content=reply.text,
                        tool_calls=list(reply.tool_calls),
                        tool_results=step_results,
                    )
                )
                self.status = AgentStatus.THINKING
                if reply.stop_reason in TERMINAL_STOP_REASONS:
                    phase = TurnPhase.FINISHED
                else:
                    phase = TurnPhase.AWAITING_PRIMITIVE

        self.history.append(
            ConversationRecord(role="assistant", content=response, tool_calls=calls, tool_results=results)
        )
        self.last_response = response
        self.descriptor.turns_completed += 1
        self.status = AgentStatus.COMPLETED if self._released else AgentStatus.IDLE
        logger.debug(
            "%s finished turn %d: %d tool calls, %d units",
            self.agent_id,
            self.turns_completed,
            len(calls),
            used,
        )
        return TurnResult(response=response, tool_calls=calls, tool_results=results, resource_used=used)

    def release(self) -> None:
        """Mark the actor finished; it takes no further turns."""
        self._released = True
        if self.status is not AgentStatus.ERROR:
            self.status = AgentStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.agent_id,
            "role": self.role.name,
            "mandate": self.role.mandate,
            "status": self.status.value,
            "turns": self.turns_completed,
            "resource_used": self.resource_used,
            "last_error": self.descriptor.last_error,
        }

    async def _invoke_primitive(self, transcript: List[ConversationRecord]) -> ReasoningReply:
        request = ReasoningRequest(
            agent_id=self.agent_id,
            session_id=self.session_id,
            system_prompt=self.system_prompt,
            transcript=list(transcript),
            tools=self.tools,
            max_tokens=self._max_tokens,
        )
        try:
            return await self._reasoner.complete(request)
        except Exception as exc:
            self.status = AgentStatus.ERROR
            self.descriptor.last_error = str(exc)
            raise TurnExecutionError(self.agent_id, str(exc)) from exc

    async def _run_tool(self, call: ToolCall) -> ToolResult:
        outcome = await self._tool_handler(self.agent_id, self.session_id, call.name, call.input)
        if outcome.is_error:
            logger.debug("%s tool %s returned an error: %.200s", self.agent_id, call.name, outcome.result)
        return ToolResult(call_id=call.call_id, content=outcome.result, is_error=outcome.is_error)
