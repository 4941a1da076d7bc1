"""Observability events emitted by the orchestrator."""
from __future__ import annotations

import logging
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from .models import EventKind, SessionEvent, utcnow

logger = logging.getLogger(__name__)

EventSink = Callable[[SessionEvent], None]


class EventEmitter:
    """Fan out session events to every registered sink."""

    def __init__(self) -> None:
        self._sinks: List[EventSink] = []

    def add_sink(self, sink: EventSink) -> Callable[[], None]:
        self._sinks.append(sink)

        def remove() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return remove

    def emit(
        self,
        kind: EventKind,
        session_id: str,
        data: Dict[str, Any],
        agent_id: Optional[str] = None,
    ) -> SessionEvent:
        event = SessionEvent(
            event_id=f"evt-{uuid.uuid4().hex[:12]}",
            timestamp=utcnow(),
            kind=kind,
            session_id=session_id,
            agent_id=agent_id,
            data=data,
        )
        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception:  # noqa: BLE001
                logger.exception("Event sink failed for %s event in %s", kind.value, session_id)
        return event


class EventLog:
    """Bounded in-memory sink keeping the most recent events."""

    def __init__(self, max_events: int = 5000) -> None:
        self._events: Deque[SessionEvent] = deque(maxlen=max_events)

    def __call__(self, event: SessionEvent) -> None:
        self._events.append(event)

    def for_session(self, session_id: str, limit: Optional[int] = None) -> List[SessionEvent]:
        events = [e for e in self._events if e.session_id == session_id]
        if limit and limit > 0:
            return events[-limit:]
        return events

    def __len__(self) -> int:
        return len(self._events)
