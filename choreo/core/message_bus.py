"""In-memory router delivering messages between the actors of a session."""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter, defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, FrozenSet, Iterable, List, Optional, Set

from .errors import MessageValidationError
from .models import BROADCAST, ORCHESTRATOR, USER, AgentMessage, utcnow

logger = logging.getLogger(__name__)

MessageHandler = Callable[[AgentMessage], None]

DEFAULT_HISTORY_LIMIT = 1000

_RESERVED_SENDERS = frozenset({ORCHESTRATOR, USER})
_RESERVED_RECIPIENTS = frozenset({BROADCAST, ORCHESTRATOR})


@dataclass
class _SessionRoute:
    """Roster and vocabulary the router validates a session's traffic against."""

    actors: List[str]
    allowed_types: FrozenSet[str]


class MessageRouter:
    """Async message hub with per-actor queues and per-session history."""

    def __init__(self, max_history: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._max_history = max_history
        self._routes: Dict[str, _SessionRoute] = {}
        self._history: Dict[str, Deque[AgentMessage]] = {}
        self._pending: Dict[str, List[AgentMessage]] = defaultdict(list)
        self._type_counts: Dict[str, Counter] = defaultdict(Counter)
        self._subscribers: Set[MessageHandler] = set()
        self._lock = asyncio.Lock()

    def register_session(self, session_id: str, actor_ids: Iterable[str], allowed_types: Iterable[str]) -> None:
        """Declare the roster and vocabulary of a session."""
        self._routes[session_id] = _SessionRoute(actors=list(actor_ids), allowed_types=frozenset(allowed_types))
        self._history.setdefault(session_id, deque(maxlen=self._max_history))

    def roster(self, session_id: str) -> List[str]:
        route = self._routes.get(session_id)
        return list(route.actors) if route else []

    def validate(self, message: AgentMessage) -> None:
        """Raise ``MessageValidationError`` if the message cannot be routed."""
        if not message.session_id or not isinstance(message.session_id, str):
            raise MessageValidationError("session_id", "session_id is required and must be a string")
        route = self._routes.get(message.session_id)
        if route is None:
            raise MessageValidationError("session_id", f"session {message.session_id} is not open")
        if not message.sender_id or not isinstance(message.sender_id, str):
            raise MessageValidationError("from", "from is required and must be a string")
        if message.sender_id not in route.actors and message.sender_id not in _RESERVED_SENDERS:
            raise MessageValidationError("from", f"{message.sender_id} is not a member of this session")
        if not message.recipient_id or not isinstance(message.recipient_id, str):
            raise MessageValidationError("to", "to is required and must be a string")
        if message.recipient_id not in route.actors and message.recipient_id not in _RESERVED_RECIPIENTS:
            raise MessageValidationError("to", f"{message.recipient_id} is not a member of this session")
        if not message.type or not isinstance(message.type, str):
            raise MessageValidationError("type", "type is required and must be a string")
        if message.type not in route.allowed_types:
            allowed = ", ".join(sorted(route.allowed_types))
            raise MessageValidationError("type", f"type must be one of: {allowed}")
        if message.payload is None:
            raise MessageValidationError("content", "content is required")

    async def send(self, message: AgentMessage) -> AgentMessage:
        """Validate, record and fan out a message; returns it with id and timestamp set."""
        async with self._lock:
            self.validate(message)
            message.message_id = f"msg-{uuid.uuid4().hex[:12]}"
            message.timestamp = utcnow()
            self._history[message.session_id].append(message)
            self._type_counts[message.session_id][message.type] += 1

            if message.recipient_id == BROADCAST:
                for actor_id in self._routes[message.session_id].actors:
                    if actor_id != message.sender_id:
                        self._pending[actor_id].append(message)
            elif message.recipient_id != ORCHESTRATOR:
                self._pending[message.recipient_id].append(message)

        logger.debug(
            "Routed %s %s -> %s in %s",
            message.type,
            message.sender_id,
            message.recipient_id,
            message.session_id,
        )
        self._notify(message)
        return message

    async def receive(self, actor_id: str) -> List[AgentMessage]:
        """Drain and return the actor's pending queue in enqueue order."""
        async with self._lock:
            return self._pending.pop(actor_id, [])

    def peek(self, actor_id: str) -> List[AgentMessage]:
        return list(self._pending.get(actor_id, ()))

    def has_pending(self, actor_id: str) -> bool:
        return bool(self._pending.get(actor_id))

    def history(
        self,
        session_id: str,
        limit: Optional[int] = None,
        *,
        actor_id: Optional[str] = None,
    ) -> List[AgentMessage]:
        """Return the tail of the retained history, oldest first."""
        messages = list(self._history.get(session_id, ()))
        if actor_id is not None:
            messages = [
                m
                for m in messages
                if actor_id in (m.sender_id, m.recipient_id) or m.recipient_id == BROADCAST
            ]
        if limit and limit > 0:
            return messages[-limit:]
        return messages

    def count(self, session_id: str, message_type: str) -> int:
        """Number of messages of a type ever sent in the session."""
        return self._type_counts.get(session_id, Counter())[message_type]

    def acknowledge(self, session_id: str, message_id: str) -> bool:
        for message in self._history.get(session_id, ()):
            if message.message_id == message_id:
                message.acknowledged = True
                return True
        return False

    def subscribe(self, handler: MessageHandler) -> Callable[[], None]:
        """Register a process-wide observer; returns a callable that removes it."""
        self._subscribers.add(handler)
        return lambda: self._subscribers.discard(handler)

    async def close_session(self, session_id: str) -> None:
        """Drop queues and roster of a finished session but keep its history."""
        async with self._lock:
            route = self._routes.pop(session_id, None)
            self._drop_pending(session_id, route)

    async def clear(self, session_id: str) -> None:
        """Purge history, counters and undelivered messages of a session."""
        async with self._lock:
            route = self._routes.pop(session_id, None)
            self._history.pop(session_id, None)
            self._type_counts.pop(session_id, None)
            self._drop_pending(session_id, route)

    def stats(self) -> Dict[str, int]:
        return {
            "total_sessions": len(self._history),
            "total_messages": sum(len(h) for h in self._history.values()),
            "pending_messages": sum(len(p) for p in self._pending.values()),
            "subscribers": len(self._subscribers),
        }

    def _drop_pending(self, session_id: str, route: Optional[_SessionRoute]) -> None:
        for actor_id in list(self._pending):
            remaining = [m for m in self._pending[actor_id] if m.session_id != session_id]
            if remaining:
                self._pending[actor_id] = remaining
            else:
                del self._pending[actor_id]
        if route is not None:
            for actor_id in route.actors:
                self._pending.pop(actor_id, None)

    def _notify(self, message: AgentMessage) -> None:
        for handler in list(self._subscribers):
            try:
                handler(message)
            except Exception:  # noqa: BLE001
                logger.exception("Message subscriber failed for %s", message.message_id)
