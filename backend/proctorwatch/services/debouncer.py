"""
Temporal debouncing of raw detector samples into proctoring events.

One `TemporalDebouncer` per monitored session. It is fed one sample per
tick together with a monotonic timestamp in milliseconds and returns the
events that tick qualified for (usually none). Thresholds:

  no_face         face_count == 0 and no face seen for > 10 s. The
                  last-seen time is not reset on emission, so a long
                  absence fires on every following tick unless
                  `reset_no_face_on_emit` is set.
  multiple_faces  face_count > 1, every tick.
  focus_loss      looking away for > 5 s within one episode; the episode
                  start moves to the emission time, so at most one event
                  per 5 s of continuous away-gaze.
  suspicious_object
                  every allow-listed object above the confidence floor,
                  every tick.
"""
import logging
import math
from dataclasses import dataclass
from typing import Any

from proctorwatch.core.store import utcnow
from proctorwatch.schemas.detection import DetectedObject, FaceGazeSample, ObjectSample
from proctorwatch.schemas.session import NewEvent
from proctorwatch.services.detectors import parse_face_gaze, parse_objects


logger = logging.getLogger(__name__)

SUSPICIOUS_LABELS = frozenset(
    {
        "cell phone",
        "book",
        "laptop",
        "keyboard",
        "mouse",
        "remote",
        "scissors",
        # Common misclassifications of phones and hidden notes
        "teddy bear",
        "bottle",
        "cup",
    }
)

NO_FACE_DESCRIPTION = "No face detected for more than 10 seconds"
FOCUS_LOSS_DESCRIPTION = "Candidate looked away from screen for more than 5 seconds"


@dataclass
class SignalState:
    last_face_seen_ms: float
    look_away_started_ms: float | None = None
    was_looking_away: bool = False
    last_object_detection_ms: float | None = None


def is_suspicious(obj: DetectedObject, confidence_floor: float = 0.5) -> bool:
    return obj.label.lower() in SUSPICIOUS_LABELS and obj.confidence > confidence_floor


def confidence_pct(confidence: float) -> int:
    return math.floor(confidence * 100 + 0.5)


class TemporalDebouncer:
    def __init__(
        self,
        started_at_ms: float,
        *,
        no_face_threshold_ms: float = 10_000,
        look_away_threshold_ms: float = 5_000,
        object_confidence_floor: float = 0.5,
        reset_no_face_on_emit: bool = False,
    ) -> None:
        self.no_face_threshold_ms = no_face_threshold_ms
        self.look_away_threshold_ms = look_away_threshold_ms
        self.object_confidence_floor = object_confidence_floor
        self.reset_no_face_on_emit = reset_no_face_on_emit
        self.state = SignalState(last_face_seen_ms=started_at_ms)

    def on_face_gaze(self, raw: FaceGazeSample | dict[str, Any] | None, now_ms: float) -> list[NewEvent]:
        sample = parse_face_gaze(raw)
        if sample is None:
            return []
        state = self.state
        events: list[NewEvent] = []

        if sample.face_count == 0:
            if now_ms - state.last_face_seen_ms > self.no_face_threshold_ms:
                events.append(_event("no_face", NO_FACE_DESCRIPTION, "high"))
                if self.reset_no_face_on_emit:
                    state.last_face_seen_ms = now_ms
        else:
            state.last_face_seen_ms = now_ms

        if sample.face_count > 1:
            events.append(
                _event(
                    "multiple_faces",
                    f"{sample.face_count} faces detected in frame",
                    "high",
                    {"face_count": sample.face_count, "confidence": sample.confidence},
                )
            )

        if sample.is_looking_away:
            if not state.was_looking_away:
                state.look_away_started_ms = now_ms
            elif now_ms - state.look_away_started_ms > self.look_away_threshold_ms:
                events.append(_event("focus_loss", FOCUS_LOSS_DESCRIPTION, "medium"))
                state.look_away_started_ms = now_ms
        else:
            state.look_away_started_ms = None
        state.was_looking_away = sample.is_looking_away

        if events:
            logger.debug("Face tick qualified", extra={"event_types": [e.type for e in events]})
        return events

    def on_objects(self, raw: ObjectSample | list | dict[str, Any] | None, now_ms: float) -> list[NewEvent]:
        sample = parse_objects(raw)
        if sample is None:
            return []
        self.state.last_object_detection_ms = now_ms
        events = [
            _event(
                "suspicious_object",
                f"{obj.label} detected ({confidence_pct(obj.confidence)}% confidence)",
                "high",
                {"label": obj.label, "confidence": obj.confidence, "bbox": list(obj.bbox)},
            )
            for obj in sample.objects
            if is_suspicious(obj, self.object_confidence_floor)
        ]
        if events:
            logger.debug("Object tick qualified", extra={"count": len(events)})
        return events


def _event(type: str, description: str, severity: str, metadata: dict[str, Any] | None = None) -> NewEvent:
    return NewEvent(
        type=type,
        description=description,
        severity=severity,
        timestamp=utcnow(),
        metadata=metadata,
    )
