"""Core data models shared across orchestrator components."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

ORCHESTRATOR = "orchestrator"
USER = "user"
BROADCAST = "all"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Category(str, Enum):
    """Catalog grouping of collaboration patterns."""

    SOLO = "solo"
    DUET = "duet"
    GROUP = "group"
    CRYPTO = "crypto"
    HEALING = "healing"


class Topology(str, Enum):
    """Driving discipline the orchestrator applies to a session."""

    SOLO = "solo"
    DUET = "duet"
    ROUND_ROBIN = "round_robin"
    HIERARCHICAL = "hierarchical"


class Network(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"


class SessionStatus(str, Enum):
    """Lifecycle states for a collaboration session."""

    INITIALIZING = "initializing"
    SPAWNING_AGENTS = "spawning_agents"
    RUNNING = "running"
    COMPLETING = "completing"
    COMPLETED = "completed"
    ERROR = "error"
    TIMEOUT = "timeout"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.ERROR, SessionStatus.TIMEOUT, SessionStatus.STOPPED}
)


class AgentStatus(str, Enum):
    """Lifecycle states for an agent actor."""

    INITIALIZING = "initializing"
    IDLE = "idle"
    THINKING = "thinking"
    EXECUTING_TOOL = "executing_tool"
    WAITING_FOR_MESSAGE = "waiting_for_message"
    COMPLETED = "completed"
    ERROR = "error"


class MessageType(str, Enum):
    """Every message type the router knows how to describe."""

    READY_TO_SHARE = "READY_TO_SHARE"
    RESULTS = "RESULTS"
    ACKNOWLEDGE = "ACKNOWLEDGE"
    DISCREPANCY = "DISCREPANCY"
    CONSENSUS = "CONSENSUS"
    ESCALATE = "ESCALATE"
    INSTRUCTION = "INSTRUCTION"
    QUERY = "QUERY"
    RESPONSE = "RESPONSE"
    PYRAMID_ASSIGN = "PYRAMID_ASSIGN"
    PYRAMID_REPORT = "PYRAMID_REPORT"
    STATUS_UPDATE = "STATUS_UPDATE"
    COMPLETE = "COMPLETE"


# Accepted in every session regardless of the pattern's declared vocabulary.
STANDARD_MESSAGE_TYPES: FrozenSet[str] = frozenset(
    t.value
    for t in (
        MessageType.READY_TO_SHARE,
        MessageType.RESULTS,
        MessageType.ACKNOWLEDGE,
        MessageType.DISCREPANCY,
        MessageType.CONSENSUS,
        MessageType.ESCALATE,
        MessageType.INSTRUCTION,
        MessageType.QUERY,
        MessageType.RESPONSE,
        MessageType.COMPLETE,
    )
)


class EventKind(str, Enum):
    LIFECYCLE = "lifecycle"
    AGENT_SPAWNED = "agent_spawned"
    AGENT_TURN = "agent_turn"
    AGENT_MESSAGE = "agent_message"
    AGENT_ACTION = "agent_action"
    TRANSACTION = "transaction"
    SYSTEM = "system"


@dataclass(frozen=True)
class Role:
    """Template for one participant of a pattern."""

    name: str
    mandate: str
    disposition: str = ""
    responsibilities: Tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkflowPhase:
    name: str
    description: str
    steps: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProtocolEntry:
    """One message type a pattern declares, with its guidance text."""

    type: str
    description: str


@dataclass(frozen=True)
class Pattern:
    """Immutable collaboration pattern resolved from the catalog."""

    name: str
    title: str
    description: str
    category: Category
    topology: Topology
    roles: Tuple[Role, ...]
    phases: Tuple[WorkflowPhase, ...]
    protocol: Tuple[ProtocolEntry, ...]
    overview: str = ""
    tools_used: Tuple[str, ...] = ()
    philosophy: str = ""
    coordinator: Optional[str] = None

    @property
    def participant_count(self) -> int:
        return len(self.roles)

    @property
    def vocabulary(self) -> FrozenSet[str]:
        return frozenset(entry.type for entry in self.protocol)

    @property
    def allowed_message_types(self) -> FrozenSet[str]:
        return self.vocabulary | STANDARD_MESSAGE_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "overview": self.overview,
            "category": self.category.value,
            "topology": self.topology.value,
            "participant_count": self.participant_count,
            "coordinator": self.coordinator,
            "roles": [
                {
                    "name": role.name,
                    "mandate": role.mandate,
                    "disposition": role.disposition,
                    "responsibilities": list(role.responsibilities),
                }
                for role in self.roles
            ],
            "phases": [
                {"name": phase.name, "description": phase.description, "steps": list(phase.steps)}
                for phase in self.phases
            ],
            "vocabulary": sorted(self.vocabulary),
            "tools_used": list(self.tools_used),
            "philosophy": self.philosophy,
        }


@dataclass(frozen=True)
class SessionConfig:
    """Per-session options, fixed once the session is created."""

    target: Optional[str] = None
    network: Optional[Network] = None
    duration_cap_seconds: float = 0
    allow_side_effecting_tools: bool = False
    per_agent_resource_cap: int = 0
    turn_budget: Optional[int] = None


@dataclass(slots=True)
class AgentMessage:
    """Canonical message exchanged between actors of one session."""

    sender_id: str
    recipient_id: str
    session_id: str
    type: str
    payload: Any = None
    message_id: str = ""
    timestamp: Optional[datetime] = None
    acknowledged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.message_id,
            "from": self.sender_id,
            "to": self.recipient_id,
            "session_id": self.session_id,
            "type": self.type,
            "content": self.payload,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "acknowledged": self.acknowledged,
        }


@dataclass(frozen=True)
class ToolSpec:
    """A tool offered to actors, described with a JSON schema."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    side_effecting: bool = False


@dataclass(frozen=True)
class ToolCall:
    call_id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolOutcome:
    result: str
    is_error: bool = False


@dataclass(frozen=True)
class ToolResult:
    call_id: str
    content: str
    is_error: bool = False


@dataclass
class ConversationRecord:
    """One input or response in an actor's conversation history."""

    role: str
    content: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class TurnResult:
    response: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    resource_used: int = 0


@dataclass(slots=True)
class SessionEvent:
    """Observability event tagged with its session and optional actor."""

    event_id: str
    timestamp: datetime
    kind: EventKind
    session_id: str
    data: Dict[str, Any]
    agent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind.value,
            "session_id": self.session_id,
            "agent_id": self.agent_id,
            "data": self.data,
        }
