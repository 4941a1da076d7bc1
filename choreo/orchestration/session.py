"""Session state and its lifecycle state machine."""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from choreo.agents.base import AgentActor
from choreo.core.errors import InvalidTransition
from choreo.core.models import Pattern, SessionConfig, SessionStatus, ToolSpec, utcnow

logger = logging.getLogger(__name__)

COMPLETION_SIGNALED = "signaled"
COMPLETION_BUDGET_EXHAUSTED = "budget_exhausted"
COMPLETION_RESOURCES_EXHAUSTED = "resources_exhausted"

# Forward path; ERROR, TIMEOUT and STOPPED may branch off any non-terminal state.
_FORWARD_ORDER = (
    SessionStatus.INITIALIZING,
    SessionStatus.SPAWNING_AGENTS,
    SessionStatus.RUNNING,
    SessionStatus.COMPLETING,
    SessionStatus.COMPLETED,
)
_ABORT_STATUSES = frozenset({SessionStatus.ERROR, SessionStatus.TIMEOUT, SessionStatus.STOPPED})


def make_session_id(pattern_name: str) -> str:
    return f"{pattern_name}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


@dataclass
class SessionResult:
    completion_reason: str
    summary: str
    agent_outputs: Dict[str, str] = field(default_factory=dict)
    consensus_reached: bool = False
    discrepancies: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completion_reason": self.completion_reason,
            "summary": self.summary,
            "agent_outputs": dict(self.agent_outputs),
            "consensus_reached": self.consensus_reached,
            "discrepancies": list(self.discrepancies),
        }


@dataclass
class SessionReport:
    session_id: str
    pattern: str
    status: SessionStatus
    per_actor_turn_counts: Dict[str, int]
    per_actor_resource_usage: Dict[str, int]
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    completion_reason: Optional[str] = None
    rounds_completed: int = 0
    result: Optional[SessionResult] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "session_id": self.session_id,
            "pattern": self.pattern,
            "status": self.status.value,
            "per_actor_turn_counts": dict(self.per_actor_turn_counts),
            "per_actor_resource_usage": dict(self.per_actor_resource_usage),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completion_reason": self.completion_reason,
            "rounds_completed": self.rounds_completed,
            "result": self.result.to_dict() if self.result else None,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class StopReport:
    session_id: str
    final_status: SessionStatus
    ran_for_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "final_status": self.final_status.value,
            "ran_for_seconds": self.ran_for_seconds,
        }


class Session:
    """One running instance of a pattern together with its actors."""

    def __init__(self, session_id: str, pattern: Pattern, config: SessionConfig, turn_budget: int) -> None:
        self.session_id = session_id
        self.pattern = pattern
        self.config = config
        self.turn_budget = turn_budget
        self.status = SessionStatus.INITIALIZING
        self.status_history: List[SessionStatus] = [SessionStatus.INITIALIZING]
        self.agents: Dict[str, AgentActor] = {}
        self.tool_catalog: List[ToolSpec] = []
        self.started_at = utcnow()
        self._started_clock = time.monotonic()
        self._ended_clock: Optional[float] = None
        self.completed_at: Optional[datetime] = None
        self.error: Optional[str] = None
        self.completion_reason: Optional[str] = None
        self.rounds_completed = 0
        self.result: Optional[SessionResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_running(self) -> bool:
        return self.status is SessionStatus.RUNNING

    def transition(self, new_status: SessionStatus) -> bool:
        """Move to ``new_status``; returns False if the session already ended."""
        if self.status.is_terminal:
            logger.debug("Ignoring %s for %s, already %s", new_status.value, self.session_id, self.status.value)
            return False
        if new_status not in _ABORT_STATUSES:
            current = _FORWARD_ORDER.index(self.status)
            if new_status not in _FORWARD_ORDER or _FORWARD_ORDER.index(new_status) != current + 1:
                raise InvalidTransition(self.status.value, new_status.value)
        self.status = new_status
        self.status_history.append(new_status)
        if new_status.is_terminal:
            self.completed_at = utcnow()
            self._ended_clock = time.monotonic()
        logger.info("Session %s -> %s", self.session_id, new_status.value)
        return True

    def elapsed_seconds(self) -> float:
        end = self._ended_clock if self._ended_clock is not None else time.monotonic()
        return round(end - self._started_clock, 3)

    def ordered_agents(self) -> List[AgentActor]:
        return list(self.agents.values())

    def report(self) -> SessionReport:
        return SessionReport(
            session_id=self.session_id,
            pattern=self.pattern.name,
            status=self.status,
            per_actor_turn_counts={a.agent_id: a.turns_completed for a in self.agents.values()},
            per_actor_resource_usage={a.agent_id: a.resource_used for a in self.agents.values()},
            started_at=self.started_at,
            completed_at=self.completed_at,
            error=self.error,
            completion_reason=self.completion_reason,
            rounds_completed=self.rounds_completed,
            result=self.result,
        )

    def roster(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "position": self.pattern.name,
            "status": self.status.value,
            "agents": [agent.to_dict() for agent in self.agents.values()],
        }
