from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class SessionRecord(Base):
    __tablename__ = "proctoring_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    candidate_name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    total_events: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    integrity_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    events: Mapped[list["EventRecord"]] = relationship(
        "EventRecord", back_populates="session", order_by="EventRecord.seq"
    )


class EventRecord(Base):
    __tablename__ = "proctoring_events"

    # Insertion order; the string id is what callers see
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    session_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("proctoring_sessions.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    session: Mapped[SessionRecord] = relationship("SessionRecord", back_populates="events")
