from fastapi import APIRouter, Depends

from proctorwatch.api.deps import get_ledger
from proctorwatch.schemas.session import EventCreate
from proctorwatch.services.ledger import EventLedger


router = APIRouter(prefix="/events", tags=["events"])


@router.post("")
async def create_event(
    payload: EventCreate,
    ledger: EventLedger = Depends(get_ledger),
) -> dict:
    event = await ledger.append(
        payload.session_id,
        payload.type,
        payload.severity,
        payload.description,
        metadata=payload.metadata,
    )
    return {"success": True, "event": event.model_dump(mode="json")}


@router.get("")
async def list_events(
    session_id: str,
    type: str | None = None,
    ledger: EventLedger = Depends(get_ledger),
) -> dict:
    if type:
        events = await ledger.list_by_type(session_id, type)
    else:
        events = await ledger.list_events(session_id)
    return {"success": True, "events": [e.model_dump(mode="json") for e in events]}
