"""
Per-connection conversation state.

ChatHistory keeps the last N user/assistant exchanges as LangChain messages
and silently drops the oldest exchange once the window is full. SessionStore
is the explicit session table (session id → Session); the transport opens a
session on connect and closes it on disconnect, which frees its history.
Idle sessions are swept and the table is capped, so REST clients that
never disconnect cannot grow it without bound.
Nothing here is persisted.
"""

import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

import config

logger = logging.getLogger(__name__)


class ChatHistory:
    """Bounded FIFO window of (user, assistant) exchanges."""

    def __init__(self, max_exchanges: Optional[int] = None):
        self.max_exchanges = max_exchanges or config.history_exchanges()
        self._exchanges: deque[tuple[HumanMessage, AIMessage]] = deque(maxlen=self.max_exchanges)

    def record(self, user_text: str, answer: str) -> None:
        self._exchanges.append((HumanMessage(content=user_text), AIMessage(content=answer)))

    def messages(self) -> list[BaseMessage]:
        flat: list[BaseMessage] = []
        for human, ai in self._exchanges:
            flat.extend((human, ai))
        return flat

    def to_dicts(self) -> list[dict]:
        return [
            {"role": "user" if m.type == "human" else "assistant", "content": m.content}
            for m in self.messages()
        ]

    def clear(self) -> None:
        self._exchanges.clear()

    def __len__(self) -> int:
        return len(self._exchanges)

    @classmethod
    def from_dicts(cls, items: list[dict], max_exchanges: Optional[int] = None) -> "ChatHistory":
        """
        Rebuilds a history from [{role, content}, ...] as sent by stateless
        clients. A user entry pairs with the assistant entry that follows it;
        unpaired entries are dropped.
        """
        history = cls(max_exchanges)
        pending_user: Optional[str] = None
        for item in items:
            role = item.get("role", "")
            content = item.get("content", "")
            if role == "user":
                pending_user = content
            elif role == "assistant" and pending_user is not None:
                history.record(pending_user, content)
                pending_user = None
        return history


class SessionOwnerMismatch(Exception):
    """A known session id was presented by a different owner."""


@dataclass
class Session:
    session_id: str
    owner_id: str
    history: ChatHistory = field(default_factory=ChatHistory)
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    # time.monotonic() of the last request; drives idle eviction
    last_active: float = field(default_factory=time.monotonic)

    def touch(self, now: Optional[float] = None) -> None:
        self.last_active = time.monotonic() if now is None else now


class SessionStore:
    """
    Session table keyed by session id. Sessions share nothing but the ledger.

    Sessions idle for longer than idle_seconds are swept on every open();
    when the table is still at max_sessions the least recently active
    session is evicted to make room.
    """

    def __init__(self, max_sessions: Optional[int] = None, idle_seconds: Optional[float] = None):
        self.max_sessions = max_sessions or config.max_sessions()
        self.idle_seconds = idle_seconds or config.session_idle_seconds()
        self._sessions: dict[str, Session] = {}

    def open(self, owner_id: str, session_id: Optional[str] = None, now: Optional[float] = None) -> Session:
        """
        Returns the owner's session, creating it when the id is new.

        Raises SessionOwnerMismatch when session_id belongs to another owner.
        """
        now = time.monotonic() if now is None else now
        self.sweep(now)

        session = self._sessions.get(session_id) if session_id else None
        if session is not None:
            if session.owner_id != owner_id:
                raise SessionOwnerMismatch(session_id)
            session.touch(now)
            return session

        while len(self._sessions) >= self.max_sessions:
            oldest = min(self._sessions.values(), key=lambda s: s.last_active)
            logger.info("evicting session=%s (table full)", oldest.session_id)
            del self._sessions[oldest.session_id]

        session = Session(session_id=session_id or uuid.uuid4().hex, owner_id=owner_id, last_active=now)
        self._sessions[session.session_id] = session
        return session

    def sweep(self, now: Optional[float] = None) -> int:
        """Drops sessions idle for longer than idle_seconds. Returns how many."""
        now = time.monotonic() if now is None else now
        expired = [sid for sid, s in self._sessions.items() if now - s.last_active > self.idle_seconds]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("swept %d idle sessions", len(expired))
        return len(expired)

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def reset(self, session_id: str, owner_id: str) -> bool:
        """Clears the owner's session history. False when there is no such session for owner_id."""
        session = self._sessions.get(session_id)
        if session is None or session.owner_id != owner_id:
            return False
        session.history.clear()
        return True

    def close(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
