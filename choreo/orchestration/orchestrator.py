"""Orchestrator creating sessions, driving them and mediating their tool calls."""
from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Sequence

from choreo.agents.base import AgentActor, AgentDescriptor, make_agent_id
from choreo.agents.reasoning import ReasoningPrimitive
from choreo.config import OrchestratorConfig
from choreo.core.errors import (
    MessageValidationError,
    SessionLimitExceeded,
    UnknownActor,
    UnknownSession,
)
from choreo.core.events import EventEmitter, EventSink
from choreo.core.message_bus import MessageRouter
from choreo.core.models import (
    USER,
    AgentMessage,
    Category,
    EventKind,
    MessageType,
    Pattern,
    SessionConfig,
    SessionStatus,
    ToolOutcome,
    ToolSpec,
    Topology,
)
from choreo.patterns.registry import PatternRegistry
from choreo.services.tools import ToolHandler, ToolRegistry

from .builtins import (
    BUILTIN_TOOLS,
    DEFAULT_HISTORY_LIMIT,
    EVENTS_EMIT,
    SESSIONS_HISTORY,
    SESSIONS_LIST,
    SESSIONS_SEND,
)
from .completion import CompletionDetector
from .prompts import build_system_prompt
from .session import Session, SessionReport, SessionResult, StopReport, make_session_id
from .topologies import TIMED_OUT, SessionDriver

logger = logging.getLogger(__name__)


class Orchestrator:
    """Coordinates sessions of collaborating agent actors.

    Every collaborator is passed in explicitly so independent instances can
    coexist in one process.
    """

    def __init__(
        self,
        *,
        registry: PatternRegistry,
        router: MessageRouter,
        reasoner: ReasoningPrimitive,
        tool_registry: Optional[ToolRegistry] = None,
        emitter: Optional[EventEmitter] = None,
        settings: Optional[OrchestratorConfig] = None,
    ) -> None:
        self.registry = registry
        self.router = router
        self.reasoner = reasoner
        self.tool_registry = tool_registry or ToolRegistry()
        self.emitter = emitter or EventEmitter()
        self.settings = settings or OrchestratorConfig()
        self._detector = CompletionDetector(router, phrase_matching=self.settings.phrase_completion)
        self._sessions: Dict[str, Session] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._unsubscribe = router.subscribe(self._on_message)

    def register_tool_handler(self, prefix: str, handler: ToolHandler, tools: Sequence[ToolSpec] = ()) -> None:
        """Route every tool whose name starts with ``prefix`` to ``handler``."""
        self.tool_registry.register(prefix, handler, tools)
        logger.info("Registered tool handler for prefix %s (%d tools)", prefix, len(tools))

    def add_event_sink(self, sink: EventSink) -> Callable[[], None]:
        return self.emitter.add_sink(sink)

    async def invoke(self, pattern_name: str, config: Optional[SessionConfig] = None) -> Session:
        """Create a session and start driving it in the background.

        Raises ``UnknownPattern`` or ``SessionLimitExceeded`` before any session
        exists. The returned session already carries its actor roster.
        """
        pattern = self.registry.resolve(pattern_name)
        if pattern.participant_count > self.settings.session_max_agents:
            raise SessionLimitExceeded(pattern.name, pattern.participant_count, self.settings.session_max_agents)

        config = config or SessionConfig()
        budget = config.turn_budget if config.turn_budget is not None else self._budget_for(pattern.topology)
        session = Session(make_session_id(pattern.name), pattern, config, budget)
        self._sessions[session.session_id] = session
        self._emit_lifecycle(session, position=pattern.name, target=config.target)

        session.transition(SessionStatus.SPAWNING_AGENTS)
        self._spawn_agents(session)
        self.router.register_session(
            session.session_id,
            list(session.agents),
            pattern.allowed_message_types,
        )

        session.transition(SessionStatus.RUNNING)
        self._emit_lifecycle(session, agents=[a.to_dict() for a in session.agents.values()])

        driver = SessionDriver(session, self.router, self._detector, self.emitter)
        task = asyncio.create_task(self._run_session(session, driver), name=f"session-{session.session_id}")
        self._tasks[session.session_id] = task
        task.add_done_callback(lambda _t, sid=session.session_id: self._tasks.pop(sid, None))
        return session

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession(session_id)
        return session

    def list_sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def status(self, session_id: str) -> SessionReport:
        return self.get_session(session_id).report()

    async def stop_session(self, session_id: str) -> Optional[StopReport]:
        """Stop a session; a no-op on unknown or already finished sessions.

        Returns ``None`` for unknown ids, otherwise the final status. An
        in-flight turn finishes on its own; no new turn starts afterwards.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.transition(SessionStatus.STOPPED):
            self._release(session)
            await self.router.clear(session_id)
            self._emit_lifecycle(session, duration=session.elapsed_seconds())
        return StopReport(session_id, session.status, session.elapsed_seconds())

    def describe(self, pattern_name: str) -> Pattern:
        return self.registry.resolve(pattern_name)

    def list_patterns(self, category: Optional[Category] = None) -> List[Dict[str, Any]]:
        return [
            {
                "name": entry.name,
                "description": entry.description,
                "category": entry.category.value,
                "agents": entry.agents,
                "coordinator": entry.coordinator,
                "skill_exists": self.registry.source_exists(entry),
            }
            for entry in self.registry.entries(category)
        ]

    async def send_to_agent(self, session_id: str, agent_id: str, text: str) -> AgentMessage:
        """Queue a user instruction for an actor's next turn."""
        session = self.get_session(session_id)
        if agent_id not in session.agents:
            raise UnknownActor(agent_id, session_id)
        message = AgentMessage(
            sender_id=USER,
            recipient_id=agent_id,
            session_id=session_id,
            type=MessageType.INSTRUCTION.value,
            payload={"text": text},
        )
        return await self.router.send(message)

    async def sessions_send(
        self,
        agent_id: str,
        session_id: str,
        to: Any,
        message_type: Any,
        content: Any,
    ) -> Dict[str, Any]:
        message = AgentMessage(
            sender_id=agent_id,
            recipient_id=to,
            session_id=session_id,
            type=message_type,
            payload=content,
        )
        try:
            sent = await self.router.send(message)
        except MessageValidationError as exc:
            logger.debug("Rejected message from %s: %s", agent_id, exc)
            return exc.to_dict()
        return {"success": True, "message_id": sent.message_id}

    def sessions_list(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self._sessions.get(session_id)
        return session.roster() if session else None

    def sessions_history(self, session_id: str, limit: Optional[int] = None) -> List[AgentMessage]:
        return self.router.history(session_id, limit)

    async def handle_tool_call(
        self,
        agent_id: str,
        session_id: str,
        tool_name: str,
        tool_input: Dict[str, Any],
    ) -> ToolOutcome:
        """Serve a tool call requested during an actor's turn. Never raises."""
        if tool_name == SESSIONS_SEND:
            result = await self.sessions_send(
                agent_id,
                session_id,
                tool_input.get("to"),
                tool_input.get("type"),
                tool_input.get("content"),
            )
            return ToolOutcome(_dump(result), is_error=not result["success"])

        if tool_name == SESSIONS_LIST:
            roster = self.sessions_list(session_id)
            return ToolOutcome(_dump(roster), is_error=roster is None)

        if tool_name == SESSIONS_HISTORY:
            limit = _as_int(tool_input.get("limit"), DEFAULT_HISTORY_LIMIT)
            messages = [m.to_dict() for m in self.sessions_history(session_id, limit)]
            return ToolOutcome(_dump({"count": len(messages), "messages": messages}))

        if tool_name == EVENTS_EMIT:
            return self._emit_from_agent(agent_id, session_id, tool_input)

        session = self._sessions.get(session_id)
        spec = self.tool_registry.spec(tool_name)
        if spec is not None and spec.side_effecting:
            if session is None or not session.config.allow_side_effecting_tools:
                logger.warning("Refused side-effecting tool %s for %s", tool_name, agent_id)
                return ToolOutcome(f"Tool {tool_name} is not enabled for this session", is_error=True)

        outcome = await self.tool_registry.dispatch(tool_name, tool_input)
        self.emitter.emit(
            EventKind.TRANSACTION if spec is not None and spec.side_effecting else EventKind.AGENT_ACTION,
            session_id,
            {"tool": tool_name, "is_error": outcome.is_error},
            agent_id=agent_id,
        )
        return outcome

    async def wait_for(self, session_id: str, timeout: Optional[float] = None) -> SessionReport:
        """Wait until the session's loop has exited; raises ``asyncio.TimeoutError``."""
        session = self.get_session(session_id)
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return session.report()

    async def terminate_all(self) -> None:
        """Stop every live session and cancel their loops."""
        for session_id in list(self._sessions):
            await self.stop_session(session_id)
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def stats(self) -> Dict[str, Any]:
        by_status = Counter(s.status.value for s in self._sessions.values())
        return {
            "total_sessions": len(self._sessions),
            "active_sessions": sum(1 for s in self._sessions.values() if not s.is_terminal),
            "sessions_by_status": dict(by_status),
            "total_agents": sum(len(s.agents) for s in self._sessions.values()),
            "router": self.router.stats(),
        }

    def _spawn_agents(self, session: Session) -> None:
        catalog = list(BUILTIN_TOOLS) + self.tool_registry.catalog(
            allow_side_effects=session.config.allow_side_effecting_tools
        )
        session.tool_catalog = catalog
        for index, role in enumerate(session.pattern.roles):
            agent_id = make_agent_id(session.session_id, role.name, index)
            actor = AgentActor(
                AgentDescriptor(agent_id=agent_id, session_id=session.session_id, role=role, index=index),
                system_prompt=build_system_prompt(role, session, catalog),
                reasoner=self.reasoner,
                tool_handler=self.handle_tool_call,
                tools=catalog,
                max_tokens_per_turn=self.settings.max_tokens_per_turn,
                max_steps_per_turn=self.settings.max_tool_steps_per_turn,
            )
            session.agents[agent_id] = actor
            self.emitter.emit(
                EventKind.AGENT_SPAWNED,
                session.session_id,
                {"role": role.name, "mandate": role.mandate, "index": index},
                agent_id=agent_id,
            )
        logger.info("Spawned %d agents for %s", len(session.agents), session.session_id)

    async def _run_session(self, session: Session, driver: SessionDriver) -> None:
        try:
            reason = await driver.run()
        except Exception as exc:  # noqa: BLE001
            logger.exception("Session %s failed", session.session_id)
            await self._finish(session, SessionStatus.ERROR, error=str(exc))
            return
        if reason == TIMED_OUT:
            cap = session.config.duration_cap_seconds
            await self._finish(session, SessionStatus.TIMEOUT, error=f"Duration cap of {cap}s exceeded")
        elif reason is not None:
            await self._complete(session, reason)

    async def _complete(self, session: Session, reason: str) -> None:
        if not session.transition(SessionStatus.COMPLETING):
            return
        session.completion_reason = reason
        session.result = self._build_result(session, reason)
        await self._finish(session, SessionStatus.COMPLETED)

    async def _finish(self, session: Session, status: SessionStatus, error: Optional[str] = None) -> None:
        if error is not None and not session.is_terminal:
            session.error = error
        if not session.transition(status):
            return
        self._release(session)
        await self.router.close_session(session.session_id)
        self._emit_lifecycle(
            session,
            completion_reason=session.completion_reason,
            error=session.error,
            duration=session.elapsed_seconds(),
            agent_stats=[
                {"id": a.agent_id, "role": a.role.name, "turns": a.turns_completed, "resource_used": a.resource_used}
                for a in session.agents.values()
            ],
        )

    def _build_result(self, session: Session, reason: str) -> SessionResult:
        actors = session.ordered_agents()
        terminal = actors[-1] if actors else None
        if session.pattern.topology is Topology.HIERARCHICAL:
            terminal = next((a for a in actors if a.role.name == session.pattern.coordinator), terminal)
        history = self.router.history(session.session_id)
        return SessionResult(
            completion_reason=reason,
            summary=terminal.last_response if terminal else "",
            agent_outputs={a.agent_id: a.last_response for a in actors},
            consensus_reached=self.router.count(session.session_id, MessageType.CONSENSUS.value) > 0,
            discrepancies=[m.payload for m in history if m.type == MessageType.DISCREPANCY.value],
        )

    def _release(self, session: Session) -> None:
        for actor in session.agents.values():
            actor.release()

    def _budget_for(self, topology: Topology) -> int:
        return {
            Topology.SOLO: self.settings.solo_turn_budget,
            Topology.DUET: self.settings.duet_turn_budget,
            Topology.ROUND_ROBIN: self.settings.round_robin_turn_budget,
            Topology.HIERARCHICAL: self.settings.hierarchical_turn_budget,
        }[topology]

    def _emit_from_agent(self, agent_id: str, session_id: str, tool_input: Dict[str, Any]) -> ToolOutcome:
        try:
            kind = EventKind(tool_input.get("type", EventKind.AGENT_ACTION.value))
        except ValueError:
            return ToolOutcome(f"Unknown event type: {tool_input.get('type')}", is_error=True)
        data = tool_input.get("data")
        if not isinstance(data, dict):
            return ToolOutcome("data must be an object", is_error=True)
        event = self.emitter.emit(kind, session_id, data, agent_id=agent_id)
        return ToolOutcome(_dump({"success": True, "emitted": True, "event_id": event.event_id}))

    def _emit_lifecycle(self, session: Session, **data: Any) -> None:
        self.emitter.emit(EventKind.LIFECYCLE, session.session_id, {"status": session.status.value, **data})

    def _on_message(self, message: AgentMessage) -> None:
        self.emitter.emit(
            EventKind.AGENT_MESSAGE,
            message.session_id,
            message.to_dict(),
            agent_id=message.sender_id,
        )


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
