"""Exception hierarchy raised by the orchestration core."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ChoreoError(Exception):
    """Base class for every error the core raises on purpose."""


class ResolutionError(ChoreoError, LookupError):
    """A caller referenced something that does not exist."""


class UnknownPattern(ResolutionError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown pattern: {name}")
        self.name = name


class UnknownSession(ResolutionError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class UnknownActor(ResolutionError):
    def __init__(self, agent_id: str, session_id: Optional[str] = None) -> None:
        where = f" in session {session_id}" if session_id else ""
        super().__init__(f"Agent not found: {agent_id}{where}")
        self.agent_id = agent_id
        self.session_id = session_id


class MessageValidationError(ChoreoError, ValueError):
    """Raised by the router before a malformed message touches any queue."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": "validation_error", "field": self.field, "reason": self.reason}


class TurnExecutionError(ChoreoError):
    """The reasoning primitive failed while an actor was taking a turn."""

    def __init__(self, agent_id: str, message: str) -> None:
        super().__init__(f"Turn failed for {agent_id}: {message}")
        self.agent_id = agent_id


class InvalidTransition(ChoreoError):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Illegal session transition {current} -> {requested}")
        self.current = current
        self.requested = requested


class SessionLimitExceeded(ChoreoError):
    def __init__(self, pattern: str, required: int, limit: int) -> None:
        super().__init__(f"Pattern '{pattern}' needs {required} agents but the limit is {limit}")
        self.pattern = pattern
        self.required = required
        self.limit = limit
