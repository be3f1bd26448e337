"""
Detector boundary.

Face/gaze and object classifiers are external. Whatever they hand back is
validated here into `FaceGazeSample` / `ObjectSample` before it reaches the
debouncer; anything that does not validate becomes "no sample this tick".
"""
import asyncio
import base64
import logging
from collections.abc import Mapping
from functools import lru_cache
from io import BytesIO
from typing import Any, Protocol

import numpy as np
from PIL import Image
from pydantic import ValidationError as PydanticValidationError

from proctorwatch.schemas.detection import DetectedObject, FaceGazeSample, ObjectSample


logger = logging.getLogger(__name__)


class FaceGazeDetector(Protocol):
    async def sample_face_and_gaze(self) -> FaceGazeSample | None: ...


class ObjectDetector(Protocol):
    async def sample_objects(self) -> ObjectSample | None: ...


def parse_face_gaze(raw: Any) -> FaceGazeSample | None:
    if raw is None or isinstance(raw, FaceGazeSample):
        return raw
    if not isinstance(raw, Mapping):
        logger.debug("Discarding face sample", extra={"reason": "not a mapping"})
        return None
    data = {
        "face_count": raw.get("face_count", raw.get("faceCount")),
        "is_looking_away": raw.get("is_looking_away", raw.get("isLookingAway", False)),
        "confidence": raw.get("confidence", 0.0),
    }
    try:
        return FaceGazeSample.model_validate(data)
    except PydanticValidationError as exc:
        logger.debug("Discarding face sample", extra={"reason": str(exc)})
        return None


def parse_objects(raw: Any) -> ObjectSample | None:
    if raw is None or isinstance(raw, ObjectSample):
        return raw
    if isinstance(raw, Mapping):
        raw = raw.get("objects", [])
    if not isinstance(raw, (list, tuple)):
        logger.debug("Discarding object sample", extra={"reason": "not a sequence"})
        return None
    objects = []
    for item in raw:
        if not isinstance(item, Mapping):
            return None
        data = {
            "label": item.get("label", item.get("class")),
            "confidence": item.get("confidence", item.get("score")),
            "bbox": item.get("bbox", item.get("boundingBox", (0.0, 0.0, 0.0, 0.0))),
        }
        try:
            objects.append(DetectedObject.model_validate(data))
        except PydanticValidationError as exc:
            logger.debug("Discarding object sample", extra={"reason": str(exc)})
            return None
    return ObjectSample(objects=objects)


class PushedSampleSource:
    """Detector fed from the network.

    Browser-side detection posts samples; the monitor's pollers pick up the
    latest one. A sample is handed out once.
    """

    def __init__(self) -> None:
        self._face: FaceGazeSample | None = None
        self._objects: ObjectSample | None = None

    def push_face_gaze(self, sample: FaceGazeSample) -> None:
        self._face = sample

    def push_objects(self, sample: ObjectSample) -> None:
        self._objects = sample

    async def sample_face_and_gaze(self) -> FaceGazeSample | None:
        sample, self._face = self._face, None
        return sample

    async def sample_objects(self) -> ObjectSample | None:
        sample, self._objects = self._objects, None
        return sample


@lru_cache(maxsize=4)
def load_yolo(model_path: str, confidence: float):
    from ultralytics import YOLO

    model = YOLO(model_path)
    model.overrides["conf"] = confidence
    logger.info("YOLO model loaded", extra={"model_path": model_path})
    return model


def decode_frame(frame_base64: str) -> np.ndarray:
    if "," in frame_base64:
        frame_base64 = frame_base64.split(",", 1)[1]
    image_bytes = base64.b64decode(frame_base64)
    image = Image.open(BytesIO(image_bytes)).convert("RGB")
    return np.array(image)


def objects_from_results(results) -> list[DetectedObject]:
    objects = []
    for result in results:
        names = result.names
        boxes = result.boxes
        if boxes is None:
            continue
        for class_id, score, xywh in zip(boxes.cls.tolist(), boxes.conf.tolist(), boxes.xywh.tolist()):
            x_center, y_center, width, height = xywh
            objects.append(
                DetectedObject(
                    label=names.get(int(class_id), ""),
                    confidence=float(score),
                    bbox=(x_center - width / 2, y_center - height / 2, width, height),
                )
            )
    return objects


class YoloObjectDetector:
    """Object classifier on ultralytics YOLO (COCO labels)."""

    def __init__(self, model_path: str, confidence: float = 0.20, model=None) -> None:
        self.model_path = model_path
        self.confidence = confidence
        self._model = model

    @property
    def model(self):
        if self._model is None:
            self._model = load_yolo(self.model_path, self.confidence)
        return self._model

    def detect(self, frame: np.ndarray) -> ObjectSample:
        return ObjectSample(objects=objects_from_results(self.model(frame, verbose=False)))

    async def detect_base64(self, frame_base64: str) -> ObjectSample:
        frame = decode_frame(frame_base64)
        return await asyncio.to_thread(self.detect, frame)
