from proctorwatch.schemas.detection import DetectedObject, FaceGazeSample, ObjectSample
from proctorwatch.services.debouncer import (
    FOCUS_LOSS_DESCRIPTION,
    NO_FACE_DESCRIPTION,
    TemporalDebouncer,
    confidence_pct,
    is_suspicious,
)


def _face(count: int = 1, away: bool = False, confidence: float = 0.9) -> FaceGazeSample:
    return FaceGazeSample(face_count=count, is_looking_away=away, confidence=confidence)


def _types(events) -> list[str]:
    return [event.type for event in events]


def test_focus_loss_fires_once_after_five_seconds() -> None:
    debouncer = TemporalDebouncer(0)
    emitted = []
    for now in (0, 2500, 5001):
        emitted += debouncer.on_face_gaze(_face(away=True), now)
    assert _types(emitted) == ["focus_loss"]
    assert emitted[0].severity == "medium"
    assert emitted[0].description == FOCUS_LOSS_DESCRIPTION


def test_focus_loss_resets_episode_start_on_emission() -> None:
    debouncer = TemporalDebouncer(0)
    emitted = []
    for now in (0, 2500, 5001, 7500, 10002):
        emitted += debouncer.on_face_gaze(_face(away=True), now)
    assert _types(emitted) == ["focus_loss", "focus_loss"]


def test_focus_loss_exactly_at_threshold_does_not_fire() -> None:
    debouncer = TemporalDebouncer(0)
    assert debouncer.on_face_gaze(_face(away=True), 0) == []
    assert debouncer.on_face_gaze(_face(away=True), 5000) == []


def test_looking_back_clears_episode() -> None:
    debouncer = TemporalDebouncer(0)
    debouncer.on_face_gaze(_face(away=True), 0)
    debouncer.on_face_gaze(_face(away=True), 4000)
    assert debouncer.on_face_gaze(_face(away=False), 4500) == []
    assert debouncer.state.look_away_started_ms is None
    # New episode starts here, not at 0
    assert debouncer.on_face_gaze(_face(away=True), 6000) == []
    assert debouncer.on_face_gaze(_face(away=True), 9000) == []
    assert _types(debouncer.on_face_gaze(_face(away=True), 11001)) == ["focus_loss"]


def test_no_face_fires_after_ten_seconds_and_repeats() -> None:
    debouncer = TemporalDebouncer(0)
    assert debouncer.on_face_gaze(_face(count=0), 10_000) == []
    first = debouncer.on_face_gaze(_face(count=0), 10_001)
    assert _types(first) == ["no_face"]
    assert first[0].severity == "high"
    assert first[0].description == NO_FACE_DESCRIPTION
    # last-seen is not reset, so continued absence fires every tick
    assert _types(debouncer.on_face_gaze(_face(count=0), 11_001)) == ["no_face"]


def test_no_face_reset_on_emit_waits_another_window() -> None:
    debouncer = TemporalDebouncer(0, reset_no_face_on_emit=True)
    assert _types(debouncer.on_face_gaze(_face(count=0), 10_001)) == ["no_face"]
    assert debouncer.on_face_gaze(_face(count=0), 11_001) == []
    assert _types(debouncer.on_face_gaze(_face(count=0), 20_002)) == ["no_face"]


def test_face_seen_restarts_no_face_window() -> None:
    debouncer = TemporalDebouncer(0)
    debouncer.on_face_gaze(_face(count=1), 9_000)
    assert debouncer.on_face_gaze(_face(count=0), 15_000) == []
    assert _types(debouncer.on_face_gaze(_face(count=0), 19_001)) == ["no_face"]


def test_multiple_faces_every_tick() -> None:
    debouncer = TemporalDebouncer(0)
    events = debouncer.on_face_gaze(_face(count=3, confidence=0.8), 100)
    assert _types(events) == ["multiple_faces"]
    assert events[0].description == "3 faces detected in frame"
    assert events[0].metadata == {"face_count": 3, "confidence": 0.8}
    assert _types(debouncer.on_face_gaze(_face(count=2), 200)) == ["multiple_faces"]


def test_malformed_face_sample_is_no_signal() -> None:
    debouncer = TemporalDebouncer(0)
    assert debouncer.on_face_gaze(None, 20_000) == []
    assert debouncer.on_face_gaze({"face_count": -1}, 20_000) == []
    assert debouncer.on_face_gaze("garbage", 20_000) == []
    assert debouncer.state.last_face_seen_ms == 0


def test_face_sample_accepts_camel_case() -> None:
    debouncer = TemporalDebouncer(0)
    events = debouncer.on_face_gaze({"faceCount": 2, "isLookingAway": False, "confidence": 0.7}, 10)
    assert _types(events) == ["multiple_faces"]


def test_objects_filtered_by_label_and_confidence() -> None:
    debouncer = TemporalDebouncer(0)
    sample = ObjectSample(
        objects=[
            DetectedObject(label="cell phone", confidence=0.874, bbox=(1, 2, 3, 4)),
            DetectedObject(label="person", confidence=0.99, bbox=(0, 0, 10, 10)),
            DetectedObject(label="book", confidence=0.5, bbox=(0, 0, 1, 1)),
            DetectedObject(label="Laptop", confidence=0.61, bbox=(5, 5, 5, 5)),
        ]
    )
    events = debouncer.on_objects(sample, 2000)
    assert _types(events) == ["suspicious_object", "suspicious_object"]
    assert events[0].description == "cell phone detected (87% confidence)"
    assert events[0].severity == "high"
    assert events[0].metadata == {"label": "cell phone", "confidence": 0.874, "bbox": [1.0, 2.0, 3.0, 4.0]}
    assert events[1].description == "Laptop detected (61% confidence)"
    # No debouncing on objects
    assert len(debouncer.on_objects(sample, 4000)) == 2


def test_objects_from_raw_mapping() -> None:
    debouncer = TemporalDebouncer(0)
    events = debouncer.on_objects({"objects": [{"class": "scissors", "score": 0.706, "boundingBox": [0, 0, 2, 2]}]}, 0)
    assert [e.description for e in events] == ["scissors detected (71% confidence)"]
    assert debouncer.on_objects([{"label": "book"}], 0) == []
    assert debouncer.on_objects(42, 0) == []


def test_suspicious_helpers() -> None:
    assert is_suspicious(DetectedObject(label="Cell Phone", confidence=0.51, bbox=(0, 0, 0, 0)))
    assert not is_suspicious(DetectedObject(label="cell phone", confidence=0.5, bbox=(0, 0, 0, 0)))
    assert confidence_pct(0.875) == 88
    assert confidence_pct(0.5) == 50


def _fired_at(debouncer: TemporalDebouncer, sample: FaceGazeSample, event_type: str) -> list[int]:
    fired = []
    for now in range(0, 30001, 1000):
        if event_type in _types(debouncer.on_face_gaze(sample, now)):
            fired.append(now)
    return fired


def test_focus_loss_cadence_at_one_second_ticks() -> None:
    debouncer = TemporalDebouncer(0)
    assert _fired_at(debouncer, _face(away=True), "focus_loss") == [6000, 12000, 18000, 24000, 30000]


def test_no_face_cadence_at_one_second_ticks() -> None:
    debouncer = TemporalDebouncer(0)
    assert _fired_at(debouncer, _face(count=0), "no_face") == list(range(11000, 30001, 1000))

    resetting = TemporalDebouncer(0, reset_no_face_on_emit=True)
    assert _fired_at(resetting, _face(count=0), "no_face") == [11000, 22000]
