"""Tests for session lifecycle, topology loops and tool mediation."""
from __future__ import annotations

import asyncio
import json
from typing import Optional

import pytest

from choreo.agents.reasoning import STOP_TOOL_USE, ReasoningPrimitive, ReasoningReply, ReasoningRequest
from choreo.config import OrchestratorConfig
from choreo.core.errors import (
    InvalidTransition,
    SessionLimitExceeded,
    UnknownActor,
    UnknownPattern,
    UnknownSession,
)
from choreo.core.events import EventLog
from choreo.core.message_bus import MessageRouter
from choreo.core.models import (
    AgentStatus,
    EventKind,
    SessionConfig,
    SessionStatus,
    ToolCall,
    ToolOutcome,
    ToolSpec,
)
from choreo.orchestration.orchestrator import Orchestrator
from choreo.orchestration.prompts import IDLE_TURN_PROMPT
from choreo.orchestration.session import Session
from choreo.patterns.registry import PatternRegistry

from tests.scripted import FailingReasoner, ScriptedReasoner, last_tool_results, say, use_tool

COMPLETED_PATH = [
    SessionStatus.INITIALIZING,
    SessionStatus.SPAWNING_AGENTS,
    SessionStatus.RUNNING,
    SessionStatus.COMPLETING,
    SessionStatus.COMPLETED,
]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def build(reasoner=None, settings: Optional[OrchestratorConfig] = None):
    router = MessageRouter()
    orchestrator = Orchestrator(
        registry=PatternRegistry(),
        router=router,
        reasoner=reasoner or ScriptedReasoner(),
        settings=settings,
    )
    log = EventLog()
    orchestrator.add_event_sink(log)
    return orchestrator, router, log


def complete_on_first_round(request, n):
    if n == 0:
        return say("Ready to begin.")
    if n == 1:
        return use_tool("sessions_send", to="all", type="COMPLETE", content={"summary": "audit done"})
    return say("Sent my completion.")


@pytest.mark.anyio
async def test_duet_completes_when_both_actors_send_complete() -> None:
    orchestrator, router, log = build(ScriptedReasoner(complete_on_first_round))

    session = await orchestrator.invoke("mirror", SessionConfig(target="X"))
    assert len(session.agents) == 2
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.status is SessionStatus.COMPLETED
    assert report.error is None
    assert report.completion_reason == "signaled"
    assert report.rounds_completed == 1
    assert set(report.per_actor_turn_counts.values()) == {2}
    assert all(units > 0 for units in report.per_actor_resource_usage.values())
    assert router.count(session.session_id, "COMPLETE") == 2
    assert session.status_history == COMPLETED_PATH
    assert "error" not in report.to_dict()


@pytest.mark.anyio
async def test_target_reaches_the_instruction_preamble() -> None:
    reasoner = ScriptedReasoner(complete_on_first_round)
    orchestrator, _, _ = build(reasoner)

    session = await orchestrator.invoke("mirror", SessionConfig(target="EQ-target-address"))
    await orchestrator.wait_for(session.session_id, timeout=5)

    first = reasoner.requests[0]
    assert "EQ-target-address" in first.system_prompt
    assert "Reflector" in first.system_prompt or "Verifier" in first.system_prompt
    assert "EQ-target-address" in first.transcript[0].content


@pytest.mark.anyio
async def test_unknown_pattern_creates_no_session() -> None:
    orchestrator, _, _ = build()

    with pytest.raises(UnknownPattern):
        await orchestrator.invoke("nonexistent")

    assert orchestrator.list_sessions() == []
    with pytest.raises(UnknownSession):
        orchestrator.status("nonexistent-123-abc")
    with pytest.raises(UnknownPattern):
        orchestrator.describe("nonexistent")


@pytest.mark.anyio
async def test_invalid_message_type_is_reported_to_sender_and_not_recorded() -> None:
    def responder(request, n):
        if n == 1:
            return use_tool("sessions_send", to="all", type="NOT_A_REAL_TYPE", content={"x": 1})
        if n == 2:
            outcome = last_tool_results(request)[0]
            assert outcome.is_error
            assert json.loads(outcome.content)["field"] == "type"
        return say("Carrying on.")

    orchestrator, router, _ = build(ScriptedReasoner(responder))
    session = await orchestrator.invoke("mirror", SessionConfig(turn_budget=1))
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.status is SessionStatus.COMPLETED
    assert all(m.type != "NOT_A_REAL_TYPE" for m in router.history(session.session_id))
    for actor in session.agents.values():
        assert actor.history[-1].tool_results[0].is_error


@pytest.mark.anyio
async def test_non_string_message_type_stays_inside_the_turn() -> None:
    def responder(request, n):
        if n == 0:
            return use_tool("sessions_send", to="all", type=["COMPLETE"], content={"x": 1})
        return say("Workflow complete.")

    orchestrator, router, _ = build(ScriptedReasoner(responder))
    session = await orchestrator.invoke("contemplator")
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.status is SessionStatus.COMPLETED
    assert report.completion_reason == "signaled"
    outcome = session.ordered_agents()[0].history[-1].tool_results[0]
    assert outcome.is_error
    assert json.loads(outcome.content)["field"] == "type"
    assert router.history(session.session_id) == []


@pytest.mark.anyio
async def test_hierarchical_budget_exhaustion() -> None:
    orchestrator, _, log = build()

    session = await orchestrator.invoke("pyramid")
    assert session.turn_budget == 25
    report = await orchestrator.wait_for(session.session_id, timeout=10)

    assert report.status is SessionStatus.COMPLETED
    assert report.completion_reason == "budget_exhausted"
    assert report.rounds_completed == 25
    assert report.error is None

    coordinator = next(a for a in session.agents.values() if a.role.name == "Oracle")
    turns = [e for e in log.for_session(session.session_id) if e.kind is EventKind.AGENT_TURN]
    synthesis = [e for e in turns if e.agent_id == coordinator.agent_id and e.data["phase"] == "synthesis"]
    assert len(synthesis) == 25
    for actor in session.agents.values():
        if actor is not coordinator:
            work = [e for e in turns if e.agent_id == actor.agent_id and e.data["phase"] == "work"]
            assert len(work) == 25
        # One decomposition or initialization turn precedes the 25 rounds.
        assert report.per_actor_turn_counts[actor.agent_id] == 26


@pytest.mark.anyio
async def test_workers_output_reaches_coordinator_synthesis() -> None:
    def responder(request, n):
        if "worker" in request.agent_id and n == 1:
            return use_tool("sessions_send", to="orchestrator", type="PYRAMID_REPORT", content={"ok": True})
        if "oracle" in request.agent_id and n == 0:
            return use_tool("sessions_send", to="all", type="PYRAMID_ASSIGN", content={"task": "scan"})
        if "oracle" in request.agent_id and n >= 1:
            return say("Final report: synthesis done.")
        return say("Working.")

    reasoner = ScriptedReasoner(responder)
    orchestrator, router, _ = build(reasoner)
    session = await orchestrator.invoke("pyramid")
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.completion_reason == "signaled"
    assert report.rounds_completed == 1
    worker_round = [r for r in reasoner.requests if "worker-1" in r.agent_id][1]
    assert "[PYRAMID_ASSIGN]" in worker_round.transcript[-1].content
    assert session.result is not None
    assert session.result.summary == "Final report: synthesis done."


@pytest.mark.anyio
async def test_stop_is_idempotent() -> None:
    orchestrator, router, log = build(ScriptedReasoner())
    session = await orchestrator.invoke("contemplator", SessionConfig(turn_budget=1000))
    assert session.status is SessionStatus.RUNNING

    first = await orchestrator.stop_session(session.session_id)
    second = await orchestrator.stop_session(session.session_id)
    await orchestrator.wait_for(session.session_id, timeout=5)

    assert first.final_status is SessionStatus.STOPPED
    assert second.final_status is SessionStatus.STOPPED
    assert second.ran_for_seconds >= first.ran_for_seconds
    assert orchestrator.status(session.session_id).status is SessionStatus.STOPPED
    assert session.status_history[-1] is SessionStatus.STOPPED
    assert all(a.status is AgentStatus.COMPLETED for a in session.agents.values())
    assert router.history(session.session_id) == []
    assert await orchestrator.stop_session("unknown-session") is None


@pytest.mark.anyio
async def test_stop_on_completed_session_keeps_final_status() -> None:
    orchestrator, _, _ = build(ScriptedReasoner(complete_on_first_round))
    session = await orchestrator.invoke("mirror")
    await orchestrator.wait_for(session.session_id, timeout=5)

    report = await orchestrator.stop_session(session.session_id)

    assert report.final_status is SessionStatus.COMPLETED
    assert session.status_history == COMPLETED_PATH


@pytest.mark.anyio
async def test_partial_completion_signal_does_not_end_round() -> None:
    def responder(request, n):
        if request.agent_id.endswith("-0"):
            return say("Workflow complete on my side.")
        return say("Still checking.")

    orchestrator, _, _ = build(ScriptedReasoner(responder))
    session = await orchestrator.invoke("mirror", SessionConfig(turn_budget=3))
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.completion_reason == "budget_exhausted"
    assert report.rounds_completed == 3


@pytest.mark.anyio
async def test_phrase_completion_when_every_actor_signals() -> None:
    orchestrator, _, _ = build(ScriptedReasoner(lambda request, n: say("Mission accomplished.")))
    session = await orchestrator.invoke("circle", SessionConfig(turn_budget=5))
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.completion_reason == "signaled"
    assert report.rounds_completed == 1
    assert set(report.per_actor_turn_counts.values()) == {2}


@pytest.mark.anyio
async def test_phrase_completion_can_be_disabled() -> None:
    settings = OrchestratorConfig(phrase_completion=False)
    orchestrator, _, _ = build(ScriptedReasoner(lambda request, n: say("Mission accomplished.")), settings)
    session = await orchestrator.invoke("mirror", SessionConfig(turn_budget=2))
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.completion_reason == "budget_exhausted"


@pytest.mark.anyio
async def test_round_robin_message_reaches_later_actor_in_same_round() -> None:
    def responder(request, n):
        if request.agent_id.endswith("voice-1-0") and n == 1:
            to = request.agent_id.replace("voice-1-0", "voice-2-1")
            return use_tool("sessions_send", to=to, type="RESULTS", content={"finding": "fee spike"})
        return say("Listening.")

    reasoner = ScriptedReasoner(responder)
    orchestrator, _, _ = build(reasoner)
    session = await orchestrator.invoke("circle", SessionConfig(turn_budget=1))
    await orchestrator.wait_for(session.session_id, timeout=5)

    first, second, third = session.ordered_agents()
    second_round = reasoner.requests_for(second.agent_id)[1].transcript[-1].content
    assert f"[RESULTS] From {first.agent_id}" in second_round
    assert "fee spike" in second_round
    assert reasoner.requests_for(third.agent_id)[1].transcript[-1].content == IDLE_TURN_PROMPT


@pytest.mark.anyio
async def test_idle_round_prompt_invites_completion() -> None:
    reasoner = ScriptedReasoner()
    orchestrator, _, _ = build(reasoner)
    session = await orchestrator.invoke("mirror", SessionConfig(turn_budget=1))
    await orchestrator.wait_for(session.session_id, timeout=5)

    for actor in session.agents.values():
        round_prompt = reasoner.requests_for(actor.agent_id)[1].transcript[-1].content
        assert round_prompt == IDLE_TURN_PROMPT
        assert "COMPLETE" in round_prompt


@pytest.mark.anyio
async def test_solo_budget_termination() -> None:
    orchestrator, _, _ = build()
    session = await orchestrator.invoke("contemplator", SessionConfig(turn_budget=4))
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.status is SessionStatus.COMPLETED
    assert report.completion_reason == "budget_exhausted"
    assert list(report.per_actor_turn_counts.values()) == [4]


@pytest.mark.anyio
async def test_default_budgets_follow_topology() -> None:
    orchestrator, _, _ = build()
    budgets = {}
    for name in ("contemplator", "mirror", "circle", "pyramid"):
        session = await orchestrator.invoke(name)
        budgets[name] = session.turn_budget
        await orchestrator.stop_session(session.session_id)
        await orchestrator.wait_for(session.session_id, timeout=5)
    assert budgets == {"contemplator": 20, "mirror": 15, "circle": 20, "pyramid": 25}


@pytest.mark.anyio
async def test_turn_failure_marks_session_error() -> None:
    orchestrator, _, log = build(FailingReasoner())
    session = await orchestrator.invoke("mirror")
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.status is SessionStatus.ERROR
    assert "unreachable" in report.error
    assert report.to_dict()["error"] == report.error
    lifecycle = [e.data["status"] for e in log.for_session(session.session_id) if e.kind is EventKind.LIFECYCLE]
    assert lifecycle == ["initializing", "running", "error"]


class HalfFailingReasoner(ReasoningPrimitive):
    """The reflector's backend fails at once; everyone else answers slowly."""

    async def complete(self, request: ReasoningRequest) -> ReasoningReply:
        if "reflector" in request.agent_id:
            raise ConnectionError("reasoning backend unreachable")
        await asyncio.sleep(0.2)
        return say("Still verifying.")


@pytest.mark.anyio
async def test_failed_concurrent_turn_waits_for_its_partner() -> None:
    orchestrator, _, _ = build(HalfFailingReasoner())
    session = await orchestrator.invoke("mirror")
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.status is SessionStatus.ERROR
    counts = dict(report.per_actor_turn_counts)
    verifier = next(a for a in session.agents.values() if a.role.name == "Verifier")
    assert counts[verifier.agent_id] == 1

    await asyncio.sleep(0.3)
    assert orchestrator.status(session.session_id).per_actor_turn_counts == counts
    assert verifier.status is AgentStatus.COMPLETED


@pytest.mark.anyio
async def test_duration_cap_times_out_session() -> None:
    orchestrator, _, _ = build(ScriptedReasoner(delay=0.05))
    session = await orchestrator.invoke("contemplator", SessionConfig(duration_cap_seconds=0.02, turn_budget=100))
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.status is SessionStatus.TIMEOUT
    assert "Duration cap" in report.error
    assert sum(report.per_actor_turn_counts.values()) <= 1


@pytest.mark.anyio
async def test_resource_cap_exhausts_all_actors() -> None:
    orchestrator, _, _ = build(ScriptedReasoner(lambda request, n: say("Working.", units=10)))
    session = await orchestrator.invoke("circle", SessionConfig(per_agent_resource_cap=25))
    report = await orchestrator.wait_for(session.session_id, timeout=5)

    assert report.status is SessionStatus.COMPLETED
    assert report.completion_reason == "resources_exhausted"
    assert set(report.per_actor_turn_counts.values()) == {3}
    assert set(report.per_actor_resource_usage.values()) == {30}


@pytest.mark.anyio
async def test_session_result_collects_consensus_and_discrepancies() -> None:
    def responder(request, n):
        if n == 0:
            return ReasoningReply(
                tool_calls=[
                    ToolCall("c1", "sessions_send", {"to": "orchestrator", "type": "DISCREPANCY", "content": {"a": 1}}),
                    ToolCall("c2", "sessions_send", {"to": "orchestrator", "type": "CONSENSUS", "content": {"b": 2}}),
                ],
                units_used=5,
                stop_reason=STOP_TOOL_USE,
            )
        return say("Final report: all clear.")

    orchestrator, _, _ = build(ScriptedReasoner(responder))
    session = await orchestrator.invoke("contemplator")
    await orchestrator.wait_for(session.session_id, timeout=5)

    result = session.result
    assert result.completion_reason == "signaled"
    assert result.summary == "Final report: all clear."
    assert result.consensus_reached
    assert result.discrepancies == [{"a": 1}]
    assert list(result.agent_outputs.values()) == ["Final report: all clear."]


@pytest.mark.anyio
async def test_user_instruction_is_delivered_on_next_turn() -> None:
    reasoner = ScriptedReasoner()
    orchestrator, _, _ = build(reasoner)
    session = await orchestrator.invoke("mirror", SessionConfig(turn_budget=1))
    target = next(iter(session.agents))

    message = await orchestrator.send_to_agent(session.session_id, target, "Focus on fees")
    await orchestrator.wait_for(session.session_id, timeout=5)

    assert message.sender_id == "user"
    round_prompt = reasoner.requests_for(target)[1].transcript[-1].content
    assert "[INSTRUCTION] From user" in round_prompt
    assert "Focus on fees" in round_prompt
    with pytest.raises(UnknownActor):
        await orchestrator.send_to_agent(session.session_id, "agent-missing", "hi")


@pytest.mark.anyio
async def test_session_limit_is_enforced() -> None:
    orchestrator, _, _ = build(settings=OrchestratorConfig(session_max_agents=3))
    with pytest.raises(SessionLimitExceeded):
        await orchestrator.invoke("pyramid")
    assert orchestrator.list_sessions() == []


@pytest.mark.anyio
async def test_builtin_tools_and_prefix_dispatch() -> None:
    orchestrator, _, log = build()
    calls = []

    def ton_handler(name, tool_input):
        calls.append(name)
        if name == "ton_contract_get_info":
            raise RuntimeError("rpc down")
        return ToolOutcome(f"{name} -> 42")

    orchestrator.register_tool_handler(
        "ton_",
        ton_handler,
        [
            ToolSpec("ton_wallet_balance", "Get balance"),
            ToolSpec("ton_wallet_send", "Send funds", side_effecting=True),
        ],
    )
    session = await orchestrator.invoke("contemplator", SessionConfig(turn_budget=1))
    agent_id = next(iter(session.agents))
    sid = session.session_id

    names = [t.name for t in session.tool_catalog]
    assert "sessions_send" in names and "ton_wallet_balance" in names
    assert "ton_wallet_send" not in names
    assert session.agents[agent_id].tools == tuple(session.tool_catalog)

    roster = await orchestrator.handle_tool_call(agent_id, sid, "sessions_list", {})
    assert json.loads(roster.result)["agents"][0]["id"] == agent_id

    balance = await orchestrator.handle_tool_call(agent_id, sid, "ton_wallet_balance", {"address": "EQ"})
    assert balance == ToolOutcome("ton_wallet_balance -> 42")

    refused = await orchestrator.handle_tool_call(agent_id, sid, "ton_wallet_send", {"amount": 1})
    assert refused.is_error
    assert "ton_wallet_send" not in calls

    failed = await orchestrator.handle_tool_call(agent_id, sid, "ton_contract_get_info", {})
    assert failed.is_error and "rpc down" in failed.result

    unknown = await orchestrator.handle_tool_call(agent_id, sid, "mystery_tool", {})
    assert unknown.is_error and "Unknown tool" in unknown.result

    emitted = await orchestrator.handle_tool_call(agent_id, sid, "events_emit", {"type": "agent_action", "data": {"step": 1}})
    assert not emitted.is_error
    event = [e for e in log.for_session(sid) if e.kind is EventKind.AGENT_ACTION and e.data == {"step": 1}][0]
    assert event.agent_id == agent_id

    bad_kind = await orchestrator.handle_tool_call(agent_id, sid, "events_emit", {"type": "bogus", "data": {}})
    assert bad_kind.is_error

    history = await orchestrator.handle_tool_call(agent_id, sid, "sessions_history", {"limit": 5})
    assert json.loads(history.result)["count"] == 0


@pytest.mark.anyio
async def test_side_effecting_tools_offered_when_allowed() -> None:
    orchestrator, _, _ = build()
    orchestrator.register_tool_handler(
        "ton_",
        lambda name, tool_input: ToolOutcome("sent"),
        [ToolSpec("ton_wallet_send", "Send funds", side_effecting=True)],
    )
    session = await orchestrator.invoke(
        "contemplator", SessionConfig(allow_side_effecting_tools=True, turn_budget=1)
    )
    agent_id = next(iter(session.agents))

    assert "ton_wallet_send" in [t.name for t in session.tool_catalog]
    assert "ton_wallet_send" in session.agents[agent_id].system_prompt
    outcome = await orchestrator.handle_tool_call(agent_id, session.session_id, "ton_wallet_send", {})
    assert outcome == ToolOutcome("sent")


@pytest.mark.anyio
async def test_lifecycle_and_message_events_are_emitted() -> None:
    orchestrator, _, log = build(ScriptedReasoner(complete_on_first_round))
    session = await orchestrator.invoke("mirror")
    await orchestrator.wait_for(session.session_id, timeout=5)

    events = log.for_session(session.session_id)
    lifecycle = [e.data["status"] for e in events if e.kind is EventKind.LIFECYCLE]
    assert lifecycle == ["initializing", "running", "completed"]
    assert len([e for e in events if e.kind is EventKind.AGENT_SPAWNED]) == 2
    messages = [e for e in events if e.kind is EventKind.AGENT_MESSAGE]
    assert {e.agent_id for e in messages} == set(session.agents)
    assert all(e.data["type"] == "COMPLETE" for e in messages)


@pytest.mark.anyio
async def test_terminate_all_stops_running_sessions() -> None:
    orchestrator, _, _ = build()
    first = await orchestrator.invoke("contemplator", SessionConfig(turn_budget=1000))
    second = await orchestrator.invoke("circle", SessionConfig(turn_budget=1000))

    await orchestrator.terminate_all()

    assert first.status is SessionStatus.STOPPED
    assert second.status is SessionStatus.STOPPED
    stats = orchestrator.stats()
    assert stats["total_sessions"] == 2
    assert stats["active_sessions"] == 0
    assert stats["sessions_by_status"] == {"stopped": 2}


def test_session_transitions_are_monotonic() -> None:
    orchestrator, _, _ = build()
    pattern = orchestrator.describe("mirror")
    session = Session("mirror-1-abc", pattern, SessionConfig(), turn_budget=15)

    with pytest.raises(InvalidTransition):
        session.transition(SessionStatus.RUNNING)
    assert session.transition(SessionStatus.SPAWNING_AGENTS)
    assert session.transition(SessionStatus.TIMEOUT)
    assert session.completed_at is not None
    assert not session.transition(SessionStatus.RUNNING)
    assert not session.transition(SessionStatus.STOPPED)
    assert session.status_history == [
        SessionStatus.INITIALIZING,
        SessionStatus.SPAWNING_AGENTS,
        SessionStatus.TIMEOUT,
    ]
