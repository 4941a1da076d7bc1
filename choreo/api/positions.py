"""HTTP routes for browsing the position catalog and invoking positions."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from choreo.core.errors import ResolutionError, SessionLimitExceeded
from choreo.core.models import Category, Network, Pattern, SessionConfig
from choreo.orchestration.orchestrator import Orchestrator
from choreo.runtime import get_orchestrator

from .sessions import SessionResponse

router = APIRouter(prefix="/positions", tags=["positions"])


class PositionSummary(BaseModel):
    name: str
    description: str
    category: str
    agents: int
    coordinator: Optional[str] = None
    skill_exists: bool


class RoleModel(BaseModel):
    name: str
    mandate: str
    disposition: str
    responsibilities: List[str]


class PhaseModel(BaseModel):
    name: str
    description: str
    steps: List[str]


class PositionDetail(BaseModel):
    name: str
    title: str
    description: str
    overview: str
    category: str
    topology: str
    participant_count: int
    coordinator: Optional[str] = None
    roles: List[RoleModel]
    phases: List[PhaseModel]
    vocabulary: List[str]
    tools_used: List[str]
    philosophy: str

    @classmethod
    def from_pattern(cls, pattern: Pattern) -> "PositionDetail":
        return cls(**pattern.to_dict())


class InvokeRequest(BaseModel):
    target: Optional[str] = Field(None, description="Reference the collaboration works on, e.g. an address")
    network: Optional[Network] = None
    duration_cap_seconds: float = Field(0, ge=0, description="0 means unbounded")
    allow_side_effecting_tools: bool = False
    per_agent_resource_cap: int = Field(0, ge=0, description="0 means unbounded")
    turn_budget: Optional[int] = Field(None, ge=1)

    def to_config(self) -> SessionConfig:
        return SessionConfig(
            target=self.target,
            network=self.network,
            duration_cap_seconds=self.duration_cap_seconds,
            allow_side_effecting_tools=self.allow_side_effecting_tools,
            per_agent_resource_cap=self.per_agent_resource_cap,
            turn_budget=self.turn_budget,
        )


@router.get("", response_model=List[PositionSummary])
async def list_positions(
    category: Optional[Category] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> List[PositionSummary]:
    return [PositionSummary(**entry) for entry in orchestrator.list_patterns(category)]


@router.get("/{name}", response_model=PositionDetail)
async def describe_position(name: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> PositionDetail:
    try:
        pattern = orchestrator.describe(name)
    except ResolutionError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return PositionDetail.from_pattern(pattern)


@router.post("/{name}/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def invoke_position(
    name: str,
    request: Optional[InvokeRequest] = None,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> SessionResponse:
    """Start a session; it keeps running after the response is sent."""
    config = (request or InvokeRequest()).to_config()
    try:
        session = await orchestrator.invoke(name, config)
    except ResolutionError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SessionLimitExceeded as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return SessionResponse.from_session(session)
