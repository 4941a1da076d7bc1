"""Driving disciplines that advance a running session round by round."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Iterable, List, Optional, Sequence

from choreo.agents.base import AgentActor
from choreo.core.events import EventEmitter
from choreo.core.message_bus import MessageRouter
from choreo.core.models import AgentStatus, EventKind, Topology, TurnResult

from .completion import CompletionDetector
from .prompts import build_continuation_prompt, build_initial_prompt, build_turn_prompt
from .session import (
    COMPLETION_BUDGET_EXHAUSTED,
    COMPLETION_RESOURCES_EXHAUSTED,
    COMPLETION_SIGNALED,
    Session,
)

logger = logging.getLogger(__name__)

TIMED_OUT = "timeout"
RESPONSE_PREVIEW = 500


class SessionDriver:
    """Runs one session's topology loop.

    ``run()`` returns why the loop ended: a completion reason, ``TIMED_OUT``
    when the duration cap passed, or ``None`` when the session was stopped
    from outside. Turn failures propagate to the caller.
    """

    def __init__(
        self,
        session: Session,
        router: MessageRouter,
        detector: CompletionDetector,
        emitter: EventEmitter,
    ) -> None:
        self.session = session
        self._router = router
        self._detector = detector
        self._emitter = emitter
        self._timed_out = False

    async def run(self) -> Optional[str]:
        topology = self.session.pattern.topology
        logger.info(
            "Driving %s as %s with budget %d",
            self.session.session_id,
            topology.value,
            self.session.turn_budget,
        )
        if topology is Topology.SOLO:
            reason = await self._run_solo()
        elif topology is Topology.DUET:
            reason = await self._run_duet()
        elif topology is Topology.HIERARCHICAL:
            reason = await self._run_hierarchical()
        else:
            reason = await self._run_round_robin()

        if self._timed_out:
            return TIMED_OUT
        if not self.session.is_running:
            return None
        return reason

    async def _run_solo(self) -> Optional[str]:
        actor = self.session.ordered_agents()[0]
        while self._should_continue() and self.session.rounds_completed < self.session.turn_budget:
            if self._exhausted(actor):
                actor.release()
                return COMPLETION_RESOURCES_EXHAUSTED
            if actor.turns_completed == 0:
                prompt = build_initial_prompt(self.session, actor)
            else:
                prompt = build_continuation_prompt(await self._router.receive(actor.agent_id))
            result = await self._take_turn(actor, prompt, phase="solo")
            self.session.rounds_completed += 1
            if result is not None and self._detector.is_complete(self.session, result.response):
                return COMPLETION_SIGNALED
        return COMPLETION_BUDGET_EXHAUSTED

    async def _run_duet(self) -> Optional[str]:
        actors = self.session.ordered_agents()
        await self._initialize(actors)
        while self._should_continue() and self.session.rounds_completed < self.session.turn_budget:
            if all(self._exhausted(a) for a in actors):
                return COMPLETION_RESOURCES_EXHAUSTED
            results = await _join(self._take_drained_turn(a, "round") for a in actors)
            self.session.rounds_completed += 1
            if self._round_complete(results):
                return COMPLETION_SIGNALED
        return COMPLETION_BUDGET_EXHAUSTED

    async def _run_round_robin(self) -> Optional[str]:
        actors = self.session.ordered_agents()
        await self._initialize(actors)
        while self._should_continue() and self.session.rounds_completed < self.session.turn_budget:
            if all(self._exhausted(a) for a in actors):
                return COMPLETION_RESOURCES_EXHAUSTED
            results: List[Optional[TurnResult]] = []
            for actor in actors:
                if not self._should_continue():
                    return None
                results.append(await self._take_drained_turn(actor, "round"))
                if not actor.is_released:
                    actor.status = AgentStatus.WAITING_FOR_MESSAGE
                if self._detector.signaled_by_messages(self.session):
                    self.session.rounds_completed += 1
                    return COMPLETION_SIGNALED
            self.session.rounds_completed += 1
            if self._round_complete(results):
                return COMPLETION_SIGNALED
        return COMPLETION_BUDGET_EXHAUSTED

    async def _run_hierarchical(self) -> Optional[str]:
        coordinator = self._coordinator()
        workers = [a for a in self.session.ordered_agents() if a is not coordinator]

        if not self._should_continue():
            return None
        await self._take_turn(coordinator, build_initial_prompt(self.session, coordinator), phase="decomposition")
        await self._initialize(workers)

        while self._should_continue() and self.session.rounds_completed < self.session.turn_budget:
            if self._exhausted(coordinator):
                coordinator.release()
                return COMPLETION_RESOURCES_EXHAUSTED
            await _join(self._take_drained_turn(w, "work") for w in workers)
            if not self._should_continue():
                return None
            coordinator.status = AgentStatus.WAITING_FOR_MESSAGE
            synthesis = await self._take_drained_turn(coordinator, "synthesis")
            self.session.rounds_completed += 1
            if synthesis is not None and self._detector.is_complete(self.session, synthesis.response):
                return COMPLETION_SIGNALED
        return COMPLETION_BUDGET_EXHAUSTED

    async def _initialize(self, actors: Sequence[AgentActor]) -> None:
        if not actors or not self._should_continue():
            return
        await _join(
            self._take_turn(a, build_initial_prompt(self.session, a), phase="initialization") for a in actors
        )

    async def _take_drained_turn(self, actor: AgentActor, phase: str) -> Optional[TurnResult]:
        if self._exhausted(actor):
            actor.release()
            return None
        prompt = build_turn_prompt(await self._router.receive(actor.agent_id))
        return await self._take_turn(actor, prompt, phase=phase)

    async def _take_turn(self, actor: AgentActor, prompt: str, *, phase: str) -> Optional[TurnResult]:
        """Run one turn unless the actor has used up its resource cap."""
        if self._exhausted(actor):
            logger.info("%s reached its resource cap, skipping further turns", actor.agent_id)
            actor.release()
            return None
        result = await actor.execute_turn(prompt)
        self._emitter.emit(
            EventKind.AGENT_TURN,
            self.session.session_id,
            {
                "turn": actor.turns_completed,
                "round": self.session.rounds_completed + 1,
                "phase": phase,
                "response": result.response[:RESPONSE_PREVIEW],
                "tools_used": [call.name for call in result.tool_calls],
                "resource_used": result.resource_used,
            },
            agent_id=actor.agent_id,
        )
        return result

    def _round_complete(self, results: Sequence[Optional[TurnResult]]) -> bool:
        if self._detector.signaled_by_messages(self.session):
            return True
        # Every participant must signal in the same round; skipped actors count as signaled.
        return all(r is None or self._detector.signaled_by_phrase(r.response) for r in results)

    def _should_continue(self) -> bool:
        if not self.session.is_running:
            return False
        cap = self.session.config.duration_cap_seconds
        if cap and self.session.elapsed_seconds() >= cap:
            logger.info("Session %s exceeded its duration cap of %ss", self.session.session_id, cap)
            self._timed_out = True
            return False
        return True

    def _exhausted(self, actor: AgentActor) -> bool:
        cap = self.session.config.per_agent_resource_cap
        return actor.is_released or (cap > 0 and actor.resource_used >= cap)

    def _coordinator(self) -> AgentActor:
        name = self.session.pattern.coordinator
        for actor in self.session.ordered_agents():
            if actor.role.name == name:
                return actor
        return self.session.ordered_agents()[0]


async def _join(turns: Iterable[Awaitable[Optional[TurnResult]]]) -> List[Optional[TurnResult]]:
    """Wait for every concurrent turn, then re-raise the first failure."""
    results = await asyncio.gather(*turns, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)
