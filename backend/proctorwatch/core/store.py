import logging
import secrets
import string
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from proctorwatch.core.errors import NotFoundError
from proctorwatch.schemas.session import NewEvent, ProctoringEvent, ProctoringSession
from proctorwatch.utils.integrity import score_events


logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_id(prefix: str) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore(ABC):
    """Persistence boundary for sessions and their events.

    `append_event` writes the event and recomputes the session's cached
    `total_events` and `integrity_score` from the stored events in the same
    write, so the cache never depends on what a caller remembers.
    """

    @abstractmethod
    async def create_session(self, candidate_name: str) -> ProctoringSession: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> ProctoringSession | None: ...

    @abstractmethod
    async def update_session(self, session_id: str, fields: dict[str, Any]) -> ProctoringSession | None: ...

    @abstractmethod
    async def list_sessions(self) -> list[ProctoringSession]: ...

    @abstractmethod
    async def append_event(self, session_id: str, event: NewEvent) -> ProctoringEvent: ...

    @abstractmethod
    async def list_events(self, session_id: str) -> list[ProctoringEvent]: ...

    async def close(self) -> None:
        return None


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: dict[str, ProctoringSession] = {}
        self._events: dict[str, list[ProctoringEvent]] = {}

    async def create_session(self, candidate_name: str) -> ProctoringSession:
        session = ProctoringSession(
            id=new_id("session"),
            candidate_name=candidate_name,
            start_time=utcnow(),
        )
        self._sessions[session.id] = session
        self._events[session.id] = []
        logger.debug("Session stored", extra={"session_id": session.id})
        return session.model_copy()

    async def get_session(self, session_id: str) -> ProctoringSession | None:
        session = self._sessions.get(session_id)
        return session.model_copy() if session else None

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> ProctoringSession | None:
        session = self._sessions.get(session_id)
        if not session:
            return None
        updated = session.model_copy(update=fields)
        self._sessions[session_id] = updated
        return updated.model_copy()

    async def list_sessions(self) -> list[ProctoringSession]:
        # Newest first; ties keep creation order reversed
        sessions = sorted(self._sessions.values(), key=lambda s: s.start_time)
        return [s.model_copy() for s in reversed(sessions)]

    async def append_event(self, session_id: str, event: NewEvent) -> ProctoringEvent:
        session = self._sessions.get(session_id)
        if not session:
            raise NotFoundError(f"Session {session_id} not found")
        stored = ProctoringEvent(
            id=new_id("event"),
            session_id=session_id,
            type=event.type,
            timestamp=event.timestamp or utcnow(),
            description=event.description,
            severity=event.severity,
            metadata=event.metadata,
        )
        # No await between these two writes, so readers see both or neither
        events = [*self._events[session_id], stored]
        self._events[session_id] = events
        self._sessions[session_id] = session.model_copy(
            update={"total_events": len(events), "integrity_score": score_events(events)}
        )
        return stored

    async def list_events(self, session_id: str) -> list[ProctoringEvent]:
        return list(self._events.get(session_id, []))
