import logging

from fastapi import APIRouter, Depends

from proctorwatch.api.deps import get_lifecycle
from proctorwatch.schemas.session import SessionCreate, SessionUpdate
from proctorwatch.services.lifecycle import SessionLifecycleManager


router = APIRouter(prefix="/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)


@router.post("")
async def create_session(
    payload: SessionCreate,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
) -> dict:
    session = await lifecycle.create_session(payload.candidate_name)
    return {"success": True, "session": session.model_dump(mode="json")}


@router.get("")
async def list_sessions(lifecycle: SessionLifecycleManager = Depends(get_lifecycle)) -> dict:
    sessions = await lifecycle.list_sessions()
    return {"success": True, "sessions": [s.model_dump(mode="json") for s in sessions]}


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
) -> dict:
    session = await lifecycle.get_session(session_id)
    return {"success": True, "session": session.model_dump(mode="json")}


@router.patch("/{session_id}")
async def update_session(
    session_id: str,
    payload: SessionUpdate,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
) -> dict:
    session = await lifecycle.update_session(session_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "session": session.model_dump(mode="json")}


@router.post("/{session_id}/complete")
async def complete_session(
    session_id: str,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
) -> dict:
    session = await lifecycle.complete_session(session_id)
    return {"success": True, "session": session.model_dump(mode="json")}


@router.post("/{session_id}/terminate")
async def terminate_session(
    session_id: str,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
) -> dict:
    session = await lifecycle.terminate_session(session_id)
    logger.info("Session terminated by request", extra={"session_id": session_id})
    return {"success": True, "session": session.model_dump(mode="json")}
