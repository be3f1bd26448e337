from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


EventType = Literal["focus_loss", "no_face", "multiple_faces", "suspicious_object"]
Severity = Literal["low", "medium", "high"]
SessionStatus = Literal["active", "completed", "terminated"]

EVENT_TYPES: tuple[str, ...] = ("focus_loss", "no_face", "multiple_faces", "suspicious_object")
SEVERITIES: tuple[str, ...] = ("low", "medium", "high")
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "terminated"})


class ProctoringSession(BaseModel):
    id: str
    candidate_name: str
    start_time: datetime
    end_time: datetime | None = None
    status: SessionStatus = "active"
    total_events: int = 0
    integrity_score: int = 100

    @property
    def is_closed(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ProctoringEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    type: EventType
    timestamp: datetime
    description: str
    severity: Severity
    metadata: dict[str, Any] | None = None


class NewEvent(BaseModel):
    """An event as produced by the debouncer, before the ledger stamps an id."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    description: str
    severity: Severity
    timestamp: datetime | None = None
    metadata: dict[str, Any] | None = None


class SessionCreate(BaseModel):
    candidate_name: str


class SessionUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    candidate_name: str | None = None
    status: SessionStatus | None = None
    end_time: datetime | None = None


class EventCreate(BaseModel):
    session_id: str
    type: str
    description: str
    severity: str = "medium"
    metadata: dict[str, Any] | None = None


class BatchReportRequest(BaseModel):
    session_ids: list[str] = Field(min_length=1)
    format: Literal["csv", "summary"] = "csv"
