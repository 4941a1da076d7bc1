"""HTTP routes for inspecting, messaging and stopping sessions."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from choreo.agents.base import AgentActor
from choreo.core.errors import MessageValidationError, ResolutionError
from choreo.core.events import EventLog
from choreo.core.models import AgentMessage, SessionEvent
from choreo.orchestration.orchestrator import Orchestrator
from choreo.orchestration.session import Session, SessionReport
from choreo.runtime import get_event_log, get_orchestrator

router = APIRouter(prefix="/sessions", tags=["sessions"])


class AgentResponse(BaseModel):
    agent_id: str
    role: str
    mandate: str
    status: str
    turns: int
    resource_used: int
    last_error: Optional[str] = None

    @classmethod
    def from_actor(cls, actor: AgentActor) -> "AgentResponse":
        return cls(
            agent_id=actor.agent_id,
            role=actor.role.name,
            mandate=actor.role.mandate,
            status=actor.status.value,
            turns=actor.turns_completed,
            resource_used=actor.resource_used,
            last_error=actor.descriptor.last_error,
        )


class SessionResponse(BaseModel):
    session_id: str
    position: str
    topology: str
    status: str
    turn_budget: int
    started_at: datetime
    agents: List[AgentResponse]

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            session_id=session.session_id,
            position=session.pattern.name,
            topology=session.pattern.topology.value,
            status=session.status.value,
            turn_budget=session.turn_budget,
            started_at=session.started_at,
            agents=[AgentResponse.from_actor(a) for a in session.agents.values()],
        )


class SessionStatusResponse(BaseModel):
    session_id: str
    pattern: str
    status: str
    per_actor_turn_counts: Dict[str, int]
    per_actor_resource_usage: Dict[str, int]
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    completion_reason: Optional[str] = None
    rounds_completed: int = 0
    result: Optional[Dict[str, Any]] = None

    @classmethod
    def from_report(cls, report: SessionReport) -> "SessionStatusResponse":
        return cls(
            session_id=report.session_id,
            pattern=report.pattern,
            status=report.status.value,
            per_actor_turn_counts=report.per_actor_turn_counts,
            per_actor_resource_usage=report.per_actor_resource_usage,
            started_at=report.started_at,
            completed_at=report.completed_at,
            error=report.error,
            completion_reason=report.completion_reason,
            rounds_completed=report.rounds_completed,
            result=report.result.to_dict() if report.result else None,
        )


class StopResponse(BaseModel):
    session_id: str
    final_status: str
    ran_for_seconds: float


class MessageResponse(BaseModel):
    message_id: str
    sender_id: str
    recipient_id: str
    session_id: str
    type: str
    content: Any = None
    timestamp: Optional[datetime] = None
    acknowledged: bool = False

    @classmethod
    def from_message(cls, message: AgentMessage) -> "MessageResponse":
        return cls(
            message_id=message.message_id,
            sender_id=message.sender_id,
            recipient_id=message.recipient_id,
            session_id=message.session_id,
            type=message.type,
            content=message.payload,
            timestamp=message.timestamp,
            acknowledged=message.acknowledged,
        )


class EventResponse(BaseModel):
    event_id: str
    timestamp: datetime
    kind: str
    session_id: str
    agent_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event: SessionEvent) -> "EventResponse":
        return cls(
            event_id=event.event_id,
            timestamp=event.timestamp,
            kind=event.kind.value,
            session_id=event.session_id,
            agent_id=event.agent_id,
            data=event.data,
        )


class InstructionRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Instruction delivered on the agent's next turn")


def _lookup(orchestrator: Orchestrator, session_id: str) -> Session:
    try:
        return orchestrator.get_session(session_id)
    except ResolutionError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("", response_model=List[SessionResponse])
async def list_sessions(orchestrator: Orchestrator = Depends(get_orchestrator)) -> List[SessionResponse]:
    return [SessionResponse.from_session(s) for s in orchestrator.list_sessions()]


@router.get("/{session_id}", response_model=SessionStatusResponse)
async def get_session_status(
    session_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> SessionStatusResponse:
    return SessionStatusResponse.from_report(_lookup(orchestrator, session_id).report())


@router.delete("/{session_id}", response_model=StopResponse)
async def stop_session(
    session_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> StopResponse:
    """Stop a session; repeated calls return the same final status."""
    report = await orchestrator.stop_session(session_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Session not found: {session_id}")
    return StopResponse(
        session_id=report.session_id,
        final_status=report.final_status.value,
        ran_for_seconds=report.ran_for_seconds,
    )


@router.get("/{session_id}/messages", response_model=List[MessageResponse])
async def session_messages(
    session_id: str,
    limit: Optional[int] = Query(None, ge=1),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> List[MessageResponse]:
    _lookup(orchestrator, session_id)
    return [MessageResponse.from_message(m) for m in orchestrator.sessions_history(session_id, limit)]


@router.get("/{session_id}/events", response_model=List[EventResponse])
async def session_events(
    session_id: str,
    limit: Optional[int] = Query(None, ge=1),
    orchestrator: Orchestrator = Depends(get_orchestrator),
    event_log: EventLog = Depends(get_event_log),
) -> List[EventResponse]:
    _lookup(orchestrator, session_id)
    return [EventResponse.from_event(e) for e in event_log.for_session(session_id, limit)]


@router.post(
    "/{session_id}/agents/{agent_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def instruct_agent(
    session_id: str,
    agent_id: str,
    request: InstructionRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    try:
        message = await orchestrator.send_to_agent(session_id, agent_id, request.text)
    except ResolutionError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except MessageValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.to_dict()) from exc
    return MessageResponse.from_message(message)
