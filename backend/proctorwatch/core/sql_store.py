import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from proctorwatch.core.database import create_sessionmaker, init_db
from proctorwatch.core.errors import NotFoundError
from proctorwatch.core.store import SessionStore, new_id, utcnow
from proctorwatch.models.db import EventRecord, SessionRecord
from proctorwatch.schemas.session import NewEvent, ProctoringEvent, ProctoringSession
from proctorwatch.utils.integrity import score_severities


logger = logging.getLogger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back out
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_session(record: SessionRecord) -> ProctoringSession:
    return ProctoringSession(
        id=record.id,
        candidate_name=record.candidate_name,
        start_time=_aware(record.start_time),
        end_time=_aware(record.end_time),
        status=record.status,
        total_events=record.total_events,
        integrity_score=record.integrity_score,
    )


def _to_event(record: EventRecord) -> ProctoringEvent:
    return ProctoringEvent(
        id=record.id,
        session_id=record.session_id,
        type=record.type,
        timestamp=_aware(record.timestamp),
        description=record.description,
        severity=record.severity,
        metadata=record.payload,
    )


class SqlSessionStore(SessionStore):
    def __init__(self, engine: AsyncEngine, sessionmaker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self.engine = engine
        self.sessionmaker = sessionmaker or create_sessionmaker(engine)

    async def init(self) -> None:
        await init_db(self.engine)

    async def close(self) -> None:
        await self.engine.dispose()

    async def create_session(self, candidate_name: str) -> ProctoringSession:
        record = SessionRecord(
            id=new_id("session"),
            candidate_name=candidate_name,
            start_time=utcnow(),
            status="active",
            total_events=0,
            integrity_score=100,
        )
        async with self.sessionmaker() as db:
            db.add(record)
            await db.commit()
            await db.refresh(record)
            return _to_session(record)

    async def get_session(self, session_id: str) -> ProctoringSession | None:
        async with self.sessionmaker() as db:
            record = await db.get(SessionRecord, session_id)
            return _to_session(record) if record else None

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> ProctoringSession | None:
        async with self.sessionmaker() as db:
            record = await db.get(SessionRecord, session_id)
            if not record:
                return None
            for key, value in fields.items():
                if hasattr(SessionRecord, key):
                    setattr(record, key, value)
            await db.commit()
            await db.refresh(record)
            return _to_session(record)

    async def list_sessions(self) -> list[ProctoringSession]:
        async with self.sessionmaker() as db:
            result = await db.execute(
                select(SessionRecord).order_by(desc(SessionRecord.start_time), desc(SessionRecord.id))
            )
            return [_to_session(record) for record in result.scalars().all()]

    async def append_event(self, session_id: str, event: NewEvent) -> ProctoringEvent:
        async with self.sessionmaker() as db:
            # Row lock serialises appends to one session across processes
            session = await db.get(SessionRecord, session_id, with_for_update=True)
            if not session:
                raise NotFoundError(f"Session {session_id} not found")
            record = EventRecord(
                id=new_id("event"),
                session_id=session_id,
                type=event.type,
                timestamp=event.timestamp or utcnow(),
                description=event.description,
                severity=event.severity,
                payload=event.metadata,
            )
            db.add(record)
            await db.flush()
            result = await db.execute(
                select(EventRecord.severity).where(EventRecord.session_id == session_id)
            )
            severities = result.scalars().all()
            session.total_events = len(severities)
            session.integrity_score = score_severities(severities)
            # Event row and session aggregates commit together
            await db.commit()
            await db.refresh(record)
            return _to_event(record)

    async def list_events(self, session_id: str) -> list[ProctoringEvent]:
        async with self.sessionmaker() as db:
            result = await db.execute(
                select(EventRecord).where(EventRecord.session_id == session_id).order_by(EventRecord.seq)
            )
            return [_to_event(record) for record in result.scalars().all()]
