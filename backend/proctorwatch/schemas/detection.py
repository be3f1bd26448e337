from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class FaceGazeSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["face_gaze"] = "face_gaze"
    face_count: int = Field(ge=0)
    is_looking_away: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class DetectedObject(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    # x, y, width, height
    bbox: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)


class ObjectSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["objects"] = "objects"
    objects: list[DetectedObject] = []


class FrameRequest(BaseModel):
    frame_base64: str
