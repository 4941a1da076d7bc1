"""Completion predicate deciding when a collaboration has finished."""
from __future__ import annotations

from typing import TYPE_CHECKING, Tuple

from choreo.core.message_bus import MessageRouter
from choreo.core.models import MessageType

if TYPE_CHECKING:
    from .session import Session

COMPLETION_PHRASES: Tuple[str, ...] = (
    "workflow complete",
    "session complete",
    "collaboration complete",
    "all phases complete",
    "mission accomplished",
    "final report",
)


class CompletionDetector:
    """COMPLETE message count first, canonical phrases as a fallback.

    Phrase matching misfires on narratives that quote a phrase, so it can be
    switched off with ``phrase_matching=False``.
    """

    def __init__(self, router: MessageRouter, *, phrase_matching: bool = True) -> None:
        self._router = router
        self.phrase_matching = phrase_matching

    def signaled_by_messages(self, session: Session) -> bool:
        participants = len(session.agents)
        sent = self._router.count(session.session_id, MessageType.COMPLETE.value)
        return participants > 0 and sent >= participants

    def signaled_by_phrase(self, response: str) -> bool:
        if not self.phrase_matching:
            return False
        lowered = response.lower()
        return any(phrase in lowered for phrase in COMPLETION_PHRASES)

    def is_complete(self, session: Session, response: str) -> bool:
        return self.signaled_by_messages(session) or self.signaled_by_phrase(response)
