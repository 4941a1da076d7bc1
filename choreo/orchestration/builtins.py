"""Tools the orchestrator serves itself instead of delegating by prefix."""
from __future__ import annotations

from typing import Tuple

from choreo.core.models import EventKind, MessageType, ToolSpec

SESSIONS_SEND = "sessions_send"
SESSIONS_LIST = "sessions_list"
SESSIONS_HISTORY = "sessions_history"
EVENTS_EMIT = "events_emit"

DEFAULT_HISTORY_LIMIT = 50

BUILTIN_TOOLS: Tuple[ToolSpec, ...] = (
    ToolSpec(
        name=SESSIONS_SEND,
        description=(
            "Send a message to another agent in this collaboration session. "
            "Use this to coordinate with other agents."
        ),
        parameters={
            "type": "object",
            "properties": {
                "to": {
                    "type": "string",
                    "description": "Target agent ID, or 'all' to broadcast to all agents in the session",
                },
                "type": {
                    "type": "string",
                    "enum": [t.value for t in MessageType],
                    "description": "Message type",
                },
                "content": {
                    "type": "object",
                    "description": "Message payload, any structured data",
                },
            },
            "required": ["to", "type", "content"],
        },
    ),
    ToolSpec(
        name=SESSIONS_LIST,
        description="List all agents in the current collaboration session",
    ),
    ToolSpec(
        name=SESSIONS_HISTORY,
        description="Get the message history for this session",
        parameters={
            "type": "object",
            "properties": {
                "limit": {
                    "type": "integer",
                    "description": f"Maximum number of messages to return (default: {DEFAULT_HISTORY_LIMIT})",
                },
            },
        },
    ),
    ToolSpec(
        name=EVENTS_EMIT,
        description="Report progress or an action to observers of this session.",
        parameters={
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": [
                        EventKind.AGENT_MESSAGE.value,
                        EventKind.AGENT_ACTION.value,
                        EventKind.TRANSACTION.value,
                        EventKind.SYSTEM.value,
                    ],
                    "description": "Type of event",
                },
                "data": {"type": "object", "description": "Event data payload"},
            },
            "required": ["type", "data"],
        },
    ),
)

BUILTIN_TOOL_NAMES = frozenset(spec.name for spec in BUILTIN_TOOLS)
