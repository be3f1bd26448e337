import asyncio
import logging
from datetime import datetime
from typing import Any

from proctorwatch.core.errors import NotFoundError, SessionClosedError, ValidationError
from proctorwatch.core.store import SessionStore
from proctorwatch.schemas.session import EVENT_TYPES, SEVERITIES, NewEvent, ProctoringEvent


logger = logging.getLogger(__name__)


def tally(events: list[ProctoringEvent]) -> tuple[dict[str, int], dict[str, int]]:
    """Counts by type and by severity, every key present."""
    by_type = {key: 0 for key in EVENT_TYPES}
    by_severity = {key: 0 for key in SEVERITIES}
    for event in events:
        by_type[event.type] += 1
        by_severity[event.severity] += 1
    return by_type, by_severity


class EventLedger:
    """Append-only event record per session.

    Appends for one session are serialised by a per-session lock. The
    session's `total_events` and `integrity_score` are recomputed by the
    store from the stored events on every append; the ledger keeps no
    running totals of its own.
    """

    def __init__(self, store: SessionStore, *, reject_after_close: bool = True) -> None:
        self.store = store
        self.reject_after_close = reject_after_close
        self._locks: dict[str, asyncio.Lock] = {}

    def session_lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def release(self, session_id: str) -> None:
        """Drop the lock of a session nobody is appending to."""
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]

    async def append(
        self,
        session_id: str,
        type: str,
        severity: str,
        description: str,
        timestamp: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProctoringEvent:
        if type not in EVENT_TYPES:
            raise ValidationError(f"Invalid event type: {type}")
        if severity not in SEVERITIES:
            raise ValidationError(f"Invalid severity level: {severity}")
        event = NewEvent(
            type=type,
            severity=severity,
            description=description,
            timestamp=timestamp,
            metadata=metadata,
        )
        return await self.append_event(session_id, event)

    async def append_event(self, session_id: str, event: NewEvent) -> ProctoringEvent:
        async with self.session_lock(session_id):
            session = await self.store.get_session(session_id)
            if not session:
                raise NotFoundError(f"Session {session_id} not found")
            if session.is_closed and self.reject_after_close:
                raise SessionClosedError(
                    f"Session {session_id} is {session.status}; events are no longer accepted"
                )
            stored = await self.store.append_event(session_id, event)
        logger.info(
            "Event appended",
            extra={
                "session_id": session_id,
                "event_id": stored.id,
                "event_type": stored.type,
                "severity": stored.severity,
            },
        )
        return stored

    async def list_events(self, session_id: str) -> list[ProctoringEvent]:
        return await self.store.list_events(session_id)

    async def list_by_type(self, session_id: str, type: str) -> list[ProctoringEvent]:
        if type not in EVENT_TYPES:
            raise ValidationError(f"Invalid event type: {type}")
        return [event for event in await self.store.list_events(session_id) if event.type == type]

    async def counts(self, session_id: str) -> tuple[dict[str, int], dict[str, int]]:
        return tally(await self.store.list_events(session_id))
