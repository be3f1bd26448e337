import binascii
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from PIL import UnidentifiedImageError

from proctorwatch.api.deps import get_lifecycle, get_monitors, get_object_detector
from proctorwatch.core.errors import SessionClosedError
from proctorwatch.schemas.detection import FaceGazeSample, FrameRequest, ObjectSample
from proctorwatch.services.detectors import PushedSampleSource, YoloObjectDetector
from proctorwatch.services.lifecycle import SessionLifecycleManager
from proctorwatch.services.monitor import MonitorRegistry, SessionMonitor


router = APIRouter(prefix="/proctoring", tags=["proctoring"])
logger = logging.getLogger(__name__)


async def _monitor_for(
    session_id: str,
    lifecycle: SessionLifecycleManager,
    monitors: MonitorRegistry,
) -> SessionMonitor:
    session = await lifecycle.get_session(session_id)
    if session.is_closed:
        raise SessionClosedError(f"Session {session_id} is {session.status}; monitoring is over")
    return await monitors.ensure(session_id)


@router.post("/{session_id}/monitor/start")
async def start_monitoring(
    session_id: str,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
    monitors: MonitorRegistry = Depends(get_monitors),
) -> dict:
    """Start polling for this session; pushed samples are picked up on each tick."""
    session = await lifecycle.get_session(session_id)
    if session.is_closed:
        raise SessionClosedError(f"Session {session_id} is {session.status}; monitoring is over")
    source = PushedSampleSource()
    await monitors.start(session_id, face_detector=source, object_detector=source)
    return {"monitoring": True, "session_id": session_id}


@router.post("/{session_id}/monitor/stop")
async def stop_monitoring(
    session_id: str,
    monitors: MonitorRegistry = Depends(get_monitors),
) -> dict:
    stopped = await monitors.stop(session_id)
    return {"monitoring": False, "was_running": stopped}


@router.post("/{session_id}/samples/face")
async def push_face_sample(
    session_id: str,
    sample: FaceGazeSample,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
    monitors: MonitorRegistry = Depends(get_monitors),
) -> dict:
    monitor = await _monitor_for(session_id, lifecycle, monitors)
    queued, events = await monitor.submit_face_gaze(sample)
    return {"queued": queued, "events": [e.model_dump(mode="json") for e in events]}


@router.post("/{session_id}/samples/objects")
async def push_object_sample(
    session_id: str,
    sample: ObjectSample,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
    monitors: MonitorRegistry = Depends(get_monitors),
) -> dict:
    monitor = await _monitor_for(session_id, lifecycle, monitors)
    queued, events = await monitor.submit_objects(sample)
    return {"queued": queued, "events": [e.model_dump(mode="json") for e in events]}


@router.post("/{session_id}/frame")
async def process_frame(
    session_id: str,
    payload: FrameRequest,
    lifecycle: SessionLifecycleManager = Depends(get_lifecycle),
    monitors: MonitorRegistry = Depends(get_monitors),
    detector: YoloObjectDetector = Depends(get_object_detector),
) -> dict:
    monitor = await _monitor_for(session_id, lifecycle, monitors)
    if not payload.frame_base64:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="frame_base64 required")
    try:
        sample = await detector.detect_base64(payload.frame_base64)
    except (binascii.Error, UnidentifiedImageError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid frame") from exc
    _, events = await monitor.submit_objects(sample)
    logger.debug(
        "Frame processed",
        extra={"session_id": session_id, "objects": [o.label for o in sample.objects], "events": len(events)},
    )
    return {
        "objects": [o.model_dump(mode="json") for o in sample.objects],
        "events": [e.model_dump(mode="json") for e in events],
    }
