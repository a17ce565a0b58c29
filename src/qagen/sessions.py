"""Bounded per-session conversation memory for the chat endpoint."""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import List, Tuple

from qagen.models import ChatMessage
from qagen.telemetry import emit_session_event

LOGGER = logging.getLogger(__name__)


class ConversationSession:
    """Transcript of one conversation, capped at ``max_turns`` messages."""

    def __init__(self, session_id: str, *, max_turns: int = 40) -> None:
        if max_turns < 2:
            raise ValueError("max_turns must allow at least one question and answer")
        self.session_id = session_id
        self.max_turns = max_turns
        self._messages: List[ChatMessage] = []
        # Held for a whole question/answer round so turns of one session never interleave.
        self.lock = threading.Lock()

    def transcript(self) -> Tuple[ChatMessage, ...]:
        return tuple(self._messages)

    def record_turn(self, question: str, answer: str) -> None:
        self._messages.append(ChatMessage(role="user", content=question))
        self._messages.append(ChatMessage(role="assistant", content=answer))
        overflow = len(self._messages) - self.max_turns
        if overflow > 0:
            # Drop whole user/assistant rounds from the front.
            overflow += overflow % 2
            del self._messages[:overflow]

    def __len__(self) -> int:
        return len(self._messages)


class SessionStore:
    """Least-recently-used store of :class:`ConversationSession` objects."""

    def __init__(self, *, max_sessions: int = 256, max_turns: int = 40) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be a positive integer")
        self.max_sessions = max_sessions
        self.max_turns = max_turns
        self._sessions: "OrderedDict[str, ConversationSession]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, session_id: str) -> ConversationSession:
        """Return the session for *session_id*, creating it when missing."""

        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions.move_to_end(session_id)
                return session

            session = ConversationSession(session_id, max_turns=self.max_turns)
            self._sessions[session_id] = session
            while len(self._sessions) > self.max_sessions:
                evicted_id, evicted = self._sessions.popitem(last=False)
                LOGGER.info("Evicting conversation %s (%d messages)", evicted_id, len(evicted))
                emit_session_event(
                    "session.evict",
                    session_id=evicted_id,
                    turns=len(evicted),
                    sessions=len(self._sessions),
                )
            return session

    def discard(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = ["ConversationSession", "SessionStore"]
