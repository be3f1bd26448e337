import logging
from datetime import datetime, timezone
from typing import Any

from proctorwatch.core.errors import InvalidTransitionError, NotFoundError, ValidationError
from proctorwatch.core.store import SessionStore, utcnow
from proctorwatch.schemas.session import TERMINAL_STATUSES, ProctoringSession
from proctorwatch.services.ledger import EventLedger, tally
from proctorwatch.services.monitor import MonitorRegistry
from proctorwatch.utils.integrity import score_events
from proctorwatch.utils.report import build_report


logger = logging.getLogger(__name__)

# Derived by the store from the events; never taken from callers
DERIVED_FIELDS = frozenset({"total_events", "integrity_score"})
UPDATABLE_FIELDS = frozenset({"candidate_name", "status", "end_time"})


def _clean_name(candidate_name: Any) -> str:
    if not isinstance(candidate_name, str) or not candidate_name.strip():
        raise ValidationError("Candidate name is required")
    return candidate_name.strip()


class SessionLifecycleManager:
    def __init__(self, store: SessionStore, ledger: EventLedger, monitors: MonitorRegistry | None = None) -> None:
        self.store = store
        self.ledger = ledger
        self.monitors = monitors

    async def create_session(self, candidate_name: str) -> ProctoringSession:
        session = await self.store.create_session(_clean_name(candidate_name))
        logger.info(
            "Session created",
            extra={"session_id": session.id, "candidate_name": session.candidate_name},
        )
        return session

    async def get_session(self, session_id: str) -> ProctoringSession:
        session = await self.store.get_session(session_id)
        if not session:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    async def list_sessions(self) -> list[ProctoringSession]:
        return await self.store.list_sessions()

    async def complete_session(self, session_id: str, end_time: datetime | None = None) -> ProctoringSession:
        return await self._transition(session_id, "completed", end_time)

    async def terminate_session(self, session_id: str, end_time: datetime | None = None) -> ProctoringSession:
        return await self._transition(session_id, "terminated", end_time)

    async def _transition(
        self,
        session_id: str,
        target: str,
        end_time: datetime | None,
        changes: dict[str, Any] | None = None,
    ) -> ProctoringSession:
        if target not in TERMINAL_STATUSES:
            raise ValidationError(f"Invalid session status: {target}")
        if end_time is not None and end_time.tzinfo is None:
            end_time = end_time.replace(tzinfo=timezone.utc)
        # Same lock as appends, so no event lands between the check and the write
        async with self.ledger.session_lock(session_id):
            session = await self.get_session(session_id)
            if session.is_closed:
                raise InvalidTransitionError(
                    f"Session {session_id} is already {session.status}; cannot move to {target}"
                )
            updated = await self.store.update_session(
                session_id, {**(changes or {}), "status": target, "end_time": end_time or utcnow()}
            )
        if updated is None:
            raise NotFoundError(f"Session {session_id} not found")
        self.ledger.release(session_id)
        if self.monitors is not None:
            await self.monitors.stop(session_id)
        logger.info("Session closed", extra={"session_id": session_id, "status": target})
        return updated

    async def update_session(self, session_id: str, fields: dict[str, Any]) -> ProctoringSession:
        session = await self.get_session(session_id)
        ignored = sorted(set(fields) - UPDATABLE_FIELDS)
        if ignored:
            logger.warning(
                "Ignoring non-updatable session fields",
                extra={"session_id": session_id, "fields": ignored, "derived": sorted(DERIVED_FIELDS & set(ignored))},
            )

        changes: dict[str, Any] = {}
        if fields.get("candidate_name") is not None:
            changes["candidate_name"] = _clean_name(fields["candidate_name"])
        status = fields.get("status")
        end_time = fields.get("end_time")
        if status is not None and status != "active" and status not in TERMINAL_STATUSES:
            raise ValidationError(f"Invalid session status: {status}")
        if status is not None and status != "active":
            # Rename and close land in one write, or not at all
            return await self._transition(session_id, status, end_time, changes)
        if status == "active" and session.is_closed:
            raise InvalidTransitionError(f"Session {session_id} is already {session.status}; cannot reopen")
        if end_time is not None:
            raise ValidationError("end_time can only be set when closing a session")
        if not changes:
            return session
        updated = await self.store.update_session(session_id, changes)
        if updated is None:
            raise NotFoundError(f"Session {session_id} not found")
        return updated

    async def session_stats(self, session_id: str) -> dict[str, Any]:
        session = await self.get_session(session_id)
        events = await self.ledger.list_events(session_id)
        # Counts and score come from the same snapshot as the timeline
        by_type, by_severity = tally(events)
        session = session.model_copy(
            update={"total_events": len(events), "integrity_score": score_events(events)}
        )
        end = session.end_time or utcnow()
        duration_ms = max(0.0, (end - session.start_time).total_seconds() * 1000)
        return {
            "session": session,
            "events": events,
            "events_by_type": by_type,
            "events_by_severity": by_severity,
            "duration_seconds": round(duration_ms / 1000),
            "events_per_minute": len(events) / (duration_ms / 60000) if duration_ms else 0.0,
        }


    async def build_report(self, session_id: str) -> dict[str, Any]:
        stats = await self.session_stats(session_id)
        return build_report(stats, generated_at=utcnow())

    async def build_reports(self, session_ids: list[str]) -> list[dict[str, Any]]:
        reports = []
        for session_id in session_ids:
            try:
                reports.append(await self.build_report(session_id))
            except NotFoundError:
                logger.info("Skipping unknown session in batch", extra={"session_id": session_id})
        return reports
