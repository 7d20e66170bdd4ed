"""Shared type definitions used across the dashcam pipelines.

Detector adapters convert SDK-specific results into these small dataclasses so the
processor, overlay and API layers never depend on MediaPipe/Ultralytics/LiteRT types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

import numpy as np

Frame = np.ndarray

BBox = tuple[float, float, float, float]
Point = tuple[float, float]
Point3D = tuple[float, float, float]


class BodyPart(IntEnum):
    """MoveNet keypoints (COCO order)."""

    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16


@dataclass
class KeyPoint:
    body_part: BodyPart
    coordinate: Point
    score: float


@dataclass
class Person:
    """One MoveNet detection. `id` stays -1 unless a tracker assigned one."""

    keypoints: list[KeyPoint]
    bbox: BBox | None
    score: float
    id: int = -1


@dataclass
class PoseLandmark:
    """BlazePose landmark in pixel coordinates (z in roughly the same scale as x)."""

    index: int
    x: float
    y: float
    z: float
    in_frame_likelihood: float


@dataclass
class Pose:
    landmarks: list[PoseLandmark] = field(default_factory=list)

    def landmark(self, index: int) -> PoseLandmark | None:
        if 0 <= index < len(self.landmarks):
            return self.landmarks[index]
        return None


@dataclass
class ObjectLabel:
    text: str
    confidence: float
    index: int


@dataclass
class DetectedObject:
    """Object detector output in pixel coordinates."""

    bbox: BBox
    labels: list[ObjectLabel] = field(default_factory=list)
    tracking_id: int | None = None


@dataclass
class FaceMesh:
    bbox: BBox
    points: list[Point3D] = field(default_factory=list)


@dataclass
class CompoundDetection:
    """Combined per-frame result of every pipeline.

    A member is `None` when its pipeline is disabled or failed on this frame.
    """

    pose: Pose | None = None
    classification: list[str] | None = None
    objects: list[DetectedObject] | None = None
    face_meshes: list[FaceMesh] | None = None
    persons: list[Person] | None = None


@dataclass
class FrameSummary:
    """Metadata payload associated with a processed frame."""

    frame_id: int
    timestamp: float
    detection: CompoundDetection
    fps: float
    frame_size: tuple[int, int] = (0, 0)
    latency: dict[str, float] | None = None
    profile: dict[str, float] | None = None
