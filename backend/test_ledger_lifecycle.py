import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from proctorwatch.core.errors import InvalidTransitionError, NotFoundError, SessionClosedError, ValidationError
from proctorwatch.core.store import InMemorySessionStore
from proctorwatch.services.ledger import EventLedger
from proctorwatch.services.lifecycle import SessionLifecycleManager
from proctorwatch.utils.integrity import score_events


def _build(reject_after_close: bool = True) -> tuple[InMemorySessionStore, EventLedger, SessionLifecycleManager]:
    store = InMemorySessionStore()
    ledger = EventLedger(store, reject_after_close=reject_after_close)
    return store, ledger, SessionLifecycleManager(store, ledger)


def test_create_session_trims_and_validates_name() -> None:
    async def scenario():
        _, _, lifecycle = _build()
        session = await lifecycle.create_session("  Ada Lovelace ")
        assert session.candidate_name == "Ada Lovelace"
        assert session.status == "active"
        assert session.total_events == 0
        assert session.integrity_score == 100
        assert session.id.startswith("session_")
        with pytest.raises(ValidationError):
            await lifecycle.create_session("   ")

    asyncio.run(scenario())


def test_append_updates_aggregates_in_order() -> None:
    async def scenario():
        _, ledger, lifecycle = _build()
        session = await lifecycle.create_session("Grace")
        first = await ledger.append(session.id, "focus_loss", "medium", "looked away")
        second = await ledger.append(session.id, "suspicious_object", "high", "cell phone detected", metadata={"label": "cell phone"})
        assert first.id != second.id
        events = await ledger.list_events(session.id)
        assert [e.id for e in events] == [first.id, second.id]
        assert events[1].metadata == {"label": "cell phone"}
        refreshed = await lifecycle.get_session(session.id)
        assert refreshed.total_events == 2
        assert refreshed.integrity_score == 85

    asyncio.run(scenario())


def test_append_rejects_bad_input_and_unknown_session() -> None:
    async def scenario():
        _, ledger, lifecycle = _build()
        session = await lifecycle.create_session("Grace")
        with pytest.raises(ValidationError):
            await ledger.append(session.id, "tab_switch", "high", "x")
        with pytest.raises(ValidationError):
            await ledger.append(session.id, "no_face", "critical", "x")
        with pytest.raises(NotFoundError):
            await ledger.append("session_missing", "no_face", "high", "x")
        assert await ledger.list_events("session_missing") == []

    asyncio.run(scenario())


def test_concurrent_appends_keep_score_consistent() -> None:
    async def scenario():
        _, ledger, lifecycle = _build()
        session = await lifecycle.create_session("Linus")
        await asyncio.gather(*(ledger.append(session.id, "no_face", "high", "gone") for _ in range(12)))
        refreshed = await lifecycle.get_session(session.id)
        assert refreshed.total_events == 12
        assert refreshed.integrity_score == 0
        assert len(await ledger.list_events(session.id)) == 12

    asyncio.run(scenario())


def test_list_by_type_and_counts() -> None:
    async def scenario():
        _, ledger, lifecycle = _build()
        session = await lifecycle.create_session("Barbara")
        await ledger.append(session.id, "focus_loss", "medium", "a")
        await ledger.append(session.id, "no_face", "high", "b")
        await ledger.append(session.id, "focus_loss", "low", "c")
        assert [e.description for e in await ledger.list_by_type(session.id, "focus_loss")] == ["a", "c"]
        by_type, by_severity = await ledger.counts(session.id)
        assert by_type == {"focus_loss": 2, "no_face": 1, "multiple_faces": 0, "suspicious_object": 0}
        assert by_severity == {"low": 1, "medium": 1, "high": 1}
        with pytest.raises(ValidationError):
            await ledger.list_by_type(session.id, "unknown")

    asyncio.run(scenario())


def test_terminal_transitions() -> None:
    async def scenario():
        _, ledger, lifecycle = _build()
        session = await lifecycle.create_session("Ken")
        completed = await lifecycle.complete_session(session.id)
        assert completed.status == "completed"
        assert completed.end_time is not None
        with pytest.raises(InvalidTransitionError):
            await lifecycle.terminate_session(session.id)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.update_session(session.id, {"status": "active"})
        with pytest.raises(SessionClosedError):
            await ledger.append(session.id, "no_face", "high", "late")
        with pytest.raises(NotFoundError):
            await lifecycle.complete_session("session_missing")

    asyncio.run(scenario())


def test_closed_session_accepts_events_when_policy_off() -> None:
    async def scenario():
        _, ledger, lifecycle = _build(reject_after_close=False)
        session = await lifecycle.create_session("Ken")
        await lifecycle.terminate_session(session.id)
        await ledger.append(session.id, "no_face", "high", "late")
        refreshed = await lifecycle.get_session(session.id)
        assert refreshed.status == "terminated"
        assert refreshed.integrity_score == 90

    asyncio.run(scenario())


def test_update_ignores_derived_fields() -> None:
    async def scenario():
        _, ledger, lifecycle = _build()
        session = await lifecycle.create_session("Margaret")
        await ledger.append(session.id, "multiple_faces", "high", "2 faces detected in frame")
        updated = await lifecycle.update_session(
            session.id, {"candidate_name": "Margaret H.", "integrity_score": 100, "total_events": 0}
        )
        assert updated.candidate_name == "Margaret H."
        assert updated.integrity_score == 90
        assert updated.total_events == 1
        with pytest.raises(ValidationError):
            await lifecycle.update_session(session.id, {"status": "paused"})
        with pytest.raises(ValidationError):
            await lifecycle.update_session(session.id, {"end_time": datetime.now(timezone.utc)})
        closed = await lifecycle.update_session(session.id, {"status": "terminated"})
        assert closed.status == "terminated"

    asyncio.run(scenario())


def test_session_stats_and_report() -> None:
    async def scenario():
        _, ledger, lifecycle = _build()
        session = await lifecycle.create_session("Alan")
        for _ in range(4):
            await ledger.append(session.id, "focus_loss", "medium", "looked away")
        await ledger.append(session.id, "suspicious_object", "high", "book detected (80% confidence)")
        end = session.start_time + timedelta(minutes=2, seconds=5)
        await lifecycle.complete_session(session.id, end_time=end)

        stats = await lifecycle.session_stats(session.id)
        assert stats["duration_seconds"] == 125
        assert round(stats["events_per_minute"], 2) == 2.4

        report = await lifecycle.build_report(session.id)
        assert report["summary"] == {
            "candidate_name": "Alan",
            "duration": "2:05",
            "total_events": 5,
            "integrity_score": 70,
            "integrity_tier": "Good",
            "status": "completed",
        }
        assert report["event_breakdown"]["by_type"]["focus_loss"] == 4
        assert [item["type"] for item in report["timeline"]] == ["focus_loss"] * 4 + ["suspicious_object"]
        assert len(report["recommendations"]) == 3
        assert report["metadata"]["events_per_minute"] == 2.4

        reports = await lifecycle.build_reports([session.id, "session_missing"])
        assert len(reports) == 1

    asyncio.run(scenario())


def test_reference_scenarios() -> None:
    async def scenario():
        _, ledger, lifecycle = _build()
        fresh = await lifecycle.create_session("Jane Doe")
        report = await lifecycle.build_report(fresh.id)
        assert report["summary"]["integrity_score"] == 100
        assert report["summary"]["integrity_tier"] == "Excellent"
        assert report["recommendations"] == ["Excellent interview integrity maintained throughout the session."]

        await ledger.append(fresh.id, "no_face", "high", "No face detected for more than 10 seconds")
        report = await lifecycle.build_report(fresh.id)
        assert report["summary"]["integrity_score"] == 90
        assert report["summary"]["integrity_tier"] == "Excellent"
        assert report["event_breakdown"]["by_type"]["no_face"] == 1

        mixed = await lifecycle.create_session("Sam")
        for event_type in ("no_face", "multiple_faces", "suspicious_object"):
            await ledger.append(mixed.id, event_type, "high", "x")
        await ledger.append(mixed.id, "focus_loss", "medium", "x")
        report = await lifecycle.build_report(mixed.id)
        assert report["summary"]["integrity_score"] == 65
        assert report["summary"]["integrity_tier"] == "Moderate Concerns"

        await lifecycle.complete_session(mixed.id)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.terminate_session(mixed.id)

    asyncio.run(scenario())


class SlowStore(InMemorySessionStore):
    """Yields to the loop around each write, like a database round trip."""

    def __init__(self) -> None:
        super().__init__()
        self.written = asyncio.Event()

    async def append_event(self, session_id, event):
        await asyncio.sleep(0.01)
        stored = await super().append_event(session_id, event)
        self.written.set()
        await asyncio.sleep(0.01)
        return stored


async def _assert_cache_matches_events(store: InMemorySessionStore, session_id: str) -> None:
    events = await store.list_events(session_id)
    session = await store.get_session(session_id)
    assert session.total_events == len(events)
    assert session.integrity_score == score_events(events)


def test_cancelled_append_leaves_no_drift() -> None:
    async def scenario():
        store = SlowStore()
        ledger = EventLedger(store)
        session = await store.create_session("Edsger")
        pending = asyncio.create_task(ledger.append(session.id, "no_face", "high", "gone"))
        # Cancelled after the write, while the store is still finishing up
        await store.written.wait()
        pending.cancel()
        await asyncio.gather(pending, return_exceptions=True)
        await _assert_cache_matches_events(store, session.id)

        await ledger.append(session.id, "focus_loss", "medium", "away")
        await ledger.append(session.id, "focus_loss", "low", "away")
        assert len(await store.list_events(session.id)) == 3
        await _assert_cache_matches_events(store, session.id)
        assert (await store.get_session(session.id)).integrity_score == 83

    asyncio.run(scenario())


def test_concurrent_appends_through_two_ledgers() -> None:
    async def scenario():
        store = SlowStore()
        first, second = EventLedger(store), EventLedger(store)
        session = await store.create_session("Donald")
        await asyncio.gather(
            first.append(session.id, "no_face", "high", "a"),
            second.append(session.id, "focus_loss", "medium", "b"),
            first.append(session.id, "no_face", "high", "c"),
            second.append(session.id, "focus_loss", "low", "d"),
        )
        await _assert_cache_matches_events(store, session.id)
        refreshed = await store.get_session(session.id)
        assert refreshed.total_events == 4
        assert refreshed.integrity_score == 73

    asyncio.run(scenario())


def test_closing_update_on_closed_session_writes_nothing() -> None:
    async def scenario():
        _, _, lifecycle = _build()
        session = await lifecycle.create_session("Frances")
        completed = await lifecycle.complete_session(session.id)
        with pytest.raises(InvalidTransitionError):
            await lifecycle.update_session(session.id, {"candidate_name": "Renamed", "status": "terminated"})
        unchanged = await lifecycle.get_session(session.id)
        assert unchanged.candidate_name == "Frances"
        assert unchanged.status == "completed"
        assert unchanged.end_time == completed.end_time

        other = await lifecycle.create_session("Frances")
        closed = await lifecycle.update_session(other.id, {"candidate_name": "Frances A.", "status": "terminated"})
        assert closed.candidate_name == "Frances A."
        assert closed.status == "terminated"

    asyncio.run(scenario())


def test_report_score_follows_events_not_cached_fields() -> None:
    async def scenario():
        store, ledger, lifecycle = _build()
        session = await lifecycle.create_session("Niklaus")
        await ledger.append(session.id, "multiple_faces", "high", "2 faces detected in frame")
        await store.update_session(session.id, {"integrity_score": 3, "total_events": 99})
        stats = await lifecycle.session_stats(session.id)
        assert stats["session"].integrity_score == 90
        assert stats["session"].total_events == 1
        report = await lifecycle.build_report(session.id)
        assert report["summary"]["integrity_score"] == 90
        assert report["summary"]["integrity_tier"] == "Excellent"
        assert report["summary"]["total_events"] == 1

    asyncio.run(scenario())


def test_closing_releases_session_lock() -> None:
    async def scenario():
        _, ledger, lifecycle = _build()
        session = await lifecycle.create_session("Tony")
        await ledger.append(session.id, "no_face", "high", "gone")
        assert session.id in ledger._locks
        await lifecycle.terminate_session(session.id)
        assert session.id not in ledger._locks

    asyncio.run(scenario())
