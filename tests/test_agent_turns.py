"""Tests for the actor's bounded tool-use turn loop."""
from __future__ import annotations

from typing import Any, Dict, List, Tuple

import pytest

from choreo.agents.base import AgentActor, AgentDescriptor, make_agent_id
from choreo.agents.reasoning import STOP_END_TURN, ReasoningReply, to_chat_messages
from choreo.core.errors import TurnExecutionError
from choreo.core.models import AgentStatus, ConversationRecord, Role, ToolCall, ToolOutcome, ToolResult, ToolSpec

from tests.scripted import FailingReasoner, ScriptedReasoner, last_tool_results, say, use_tool

ROLE = Role(name="Reflector", mandate="Primary Analyst", disposition="Thorough")
TOOLS = (ToolSpec(name="sessions_list", description="List agents"),)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class RecordingToolHandler:
    def __init__(self) -> None:
        self.calls: List[Tuple[str, str, str, Dict[str, Any]]] = []
        self.statuses: List[AgentStatus] = []
        self.actor: AgentActor | None = None

    async def __call__(self, agent_id: str, session_id: str, name: str, tool_input: Dict[str, Any]) -> ToolOutcome:
        self.calls.append((agent_id, session_id, name, tool_input))
        if self.actor is not None:
            self.statuses.append(self.actor.status)
        if name == "broken_tool":
            return ToolOutcome("Unknown tool: broken_tool", is_error=True)
        return ToolOutcome(f"ok:{name}")


def make_actor(reasoner, handler, **kwargs) -> AgentActor:
    descriptor = AgentDescriptor(
        agent_id=make_agent_id("mirror-1-abc", ROLE.name, 0),
        session_id="mirror-1-abc",
        role=ROLE,
        index=0,
    )
    actor = AgentActor(
        descriptor,
        system_prompt="You are Reflector.",
        reasoner=reasoner,
        tool_handler=handler,
        tools=TOOLS,
        **kwargs,
    )
    if isinstance(handler, RecordingToolHandler):
        handler.actor = actor
    return actor


def test_agent_id_is_derived_from_session_role_and_index() -> None:
    assert make_agent_id("circle-1-abc", "Voice One", 2) == "agent-circle-1-abc-voice-one-2"


@pytest.mark.anyio
async def test_narrative_only_turn() -> None:
    reasoner = ScriptedReasoner(lambda request, n: say("Analysis begun.", units=42))
    handler = RecordingToolHandler()
    actor = make_actor(reasoner, handler)
    assert actor.status is AgentStatus.IDLE

    result = await actor.execute_turn("Begin.")

    assert result.response == "Analysis begun."
    assert result.tool_calls == [] and result.tool_results == []
    assert result.resource_used == 42
    assert actor.resource_used == 42
    assert actor.turns_completed == 1
    assert actor.status is AgentStatus.IDLE
    assert [r.role for r in actor.history] == ["user", "assistant"]
    assert reasoner.requests[0].system_prompt == "You are Reflector."
    assert reasoner.requests[0].tools == TOOLS


@pytest.mark.anyio
async def test_tool_results_are_visible_before_final_reply() -> None:
    def responder(request, n):
        if n == 0:
            return use_tool("sessions_list", units=5)
        results = last_tool_results(request)
        return say(f"Saw {results[0].content}", units=7)

    handler = RecordingToolHandler()
    actor = make_actor(ScriptedReasoner(responder), handler)

    result = await actor.execute_turn("Who is here?")

    assert result.response == "Saw ok:sessions_list"
    assert [c.name for c in result.tool_calls] == ["sessions_list"]
    assert result.tool_results[0].content == "ok:sessions_list"
    assert result.resource_used == 12
    assert handler.calls == [(actor.agent_id, "mirror-1-abc", "sessions_list", {})]
    assert handler.statuses == [AgentStatus.EXECUTING_TOOL]
    assert actor.turns_completed == 1
    assert actor.history[-1].tool_calls == result.tool_calls


@pytest.mark.anyio
async def test_tool_errors_are_returned_to_the_actor() -> None:
    def responder(request, n):
        if n == 0:
            return use_tool("broken_tool")
        assert last_tool_results(request)[0].is_error
        return say("Adapting after failure.")

    actor = make_actor(ScriptedReasoner(responder), RecordingToolHandler())
    result = await actor.execute_turn("Try it.")

    assert result.tool_results[0].is_error
    assert result.response == "Adapting after failure."


@pytest.mark.anyio
async def test_step_limit_bounds_a_turn() -> None:
    reasoner = ScriptedReasoner(lambda request, n: use_tool("sessions_list", units=1, call_id=f"c{n}"))
    handler = RecordingToolHandler()
    actor = make_actor(reasoner, handler, max_steps_per_turn=3)

    result = await actor.execute_turn("Loop forever.")

    assert len(reasoner.requests) == 3
    assert len(handler.calls) == 3
    assert result.resource_used == 3
    assert actor.turns_completed == 1
    assert actor.status is AgentStatus.IDLE


@pytest.mark.anyio
async def test_terminal_stop_reason_ends_turn_after_tools() -> None:
    call = ToolCall(call_id="c1", name="sessions_list")
    reasoner = ScriptedReasoner(
        lambda request, n: ReasoningReply(text="Done.", tool_calls=[call], units_used=3, stop_reason=STOP_END_TURN)
    )
    handler = RecordingToolHandler()
    actor = make_actor(reasoner, handler)

    result = await actor.execute_turn("Go.")

    assert len(reasoner.requests) == 1
    assert len(handler.calls) == 1
    assert result.response == "Done."


@pytest.mark.anyio
async def test_history_accumulates_across_turns() -> None:
    reasoner = ScriptedReasoner(lambda request, n: say(f"reply {n}"))
    actor = make_actor(reasoner, RecordingToolHandler())

    await actor.execute_turn("first")
    await actor.execute_turn("second")

    second_request = reasoner.requests[1]
    assert [r.content for r in second_request.transcript] == ["first", "reply 0", "second"]
    assert actor.turns_completed == 2
    assert actor.last_response == "reply 1"


@pytest.mark.anyio
async def test_primitive_failure_raises_turn_error() -> None:
    actor = make_actor(FailingReasoner(), RecordingToolHandler())

    with pytest.raises(TurnExecutionError) as excinfo:
        await actor.execute_turn("Begin.")

    assert excinfo.value.agent_id == actor.agent_id
    assert actor.status is AgentStatus.ERROR
    assert "unreachable" in actor.descriptor.last_error
    assert actor.turns_completed == 0


def test_release_marks_actor_completed() -> None:
    actor = make_actor(ScriptedReasoner(), RecordingToolHandler())
    actor.release()
    assert actor.status is AgentStatus.COMPLETED
    assert actor.is_released
    assert actor.to_dict()["status"] == "completed"


def test_chat_messages_replay_tool_exchanges() -> None:
    actor = make_actor(ScriptedReasoner(), RecordingToolHandler())
    transcript = [
        ConversationRecord(role="user", content="hi"),
        ConversationRecord(
            role="assistant",
            content="",
            tool_calls=[ToolCall(call_id="c1", name="sessions_list", input={"x": 1})],
            tool_results=[ToolResult(call_id="c1", content="[]")],
        ),
    ]
    messages = to_chat_messages(actor.system_prompt, transcript)

    assert [m["role"] for m in messages] == ["system", "user", "assistant", "tool"]
    assert messages[2]["tool_calls"][0]["function"] == {"name": "sessions_list", "arguments": '{"x": 1}'}
    assert messages[3] == {"role": "tool", "tool_call_id": "c1", "content": "[]"}


@pytest.mark.anyio
async def test_release_during_turn_sticks() -> None:
    def responder(request, n):
        if n == 0:
            return use_tool("sessions_list")
        return say("Wrapping up.")

    handler = RecordingToolHandler()
    actor = make_actor(ScriptedReasoner(responder), handler)

    async def releasing_handler(agent_id, session_id, name, tool_input):
        actor.release()
        return await handler(agent_id, session_id, name, tool_input)

    actor._tool_handler = releasing_handler
    result = await actor.execute_turn("Go.")

    assert result.response == "Wrapping up."
    assert actor.status is AgentStatus.COMPLETED
    assert actor.is_released
