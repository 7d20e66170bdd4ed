"""Face-mesh detection (MediaPipe face landmarker)."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any

import numpy as np

from dashcam.core.detectors.base import AsyncDetector, load_mediapipe, to_mp_image
from dashcam.core.types import FaceMesh

DEFAULT_MODEL_PATH = "models/face_landmarker.task"
MAX_FACES = 2


class FaceMeshUseCase(str, Enum):
    FACE_MESH = "face_mesh"
    BOUNDING_BOX_ONLY = "bounding_box_only"


def face_mesh_from_landmarks(
    landmarks: Sequence[Any],
    width: int,
    height: int,
    with_points: bool = True,
) -> FaceMesh:
    """Convert normalized face landmarks into a pixel-space `FaceMesh`.

    The bounding box is the extent of all landmarks, clipped to the frame.
    """

    pts = np.array(
        [(float(lm.x) * width, float(lm.y) * height, float(getattr(lm, "z", 0.0) or 0.0) * width) for lm in landmarks],
        dtype=np.float64,
    ).reshape(-1, 3)
    if pts.shape[0] == 0:
        return FaceMesh(bbox=(0.0, 0.0, 0.0, 0.0), points=[])

    x1 = float(np.clip(pts[:, 0].min(), 0, width))
    y1 = float(np.clip(pts[:, 1].min(), 0, height))
    x2 = float(np.clip(pts[:, 0].max(), 0, width))
    y2 = float(np.clip(pts[:, 1].max(), 0, height))
    points = [(float(x), float(y), float(z)) for x, y, z in pts] if with_points else []
    return FaceMesh(bbox=(x1, y1, x2, y2), points=points)


class FaceMeshDetector(AsyncDetector[list[FaceMesh]]):
    def __init__(
        self,
        model_path: str = DEFAULT_MODEL_PATH,
        use_case: FaceMeshUseCase = FaceMeshUseCase.FACE_MESH,
        stream_mode: bool = True,
        max_faces: int = MAX_FACES,
    ) -> None:
        super().__init__("face_mesh")
        mp = load_mediapipe()
        vision = mp.tasks.vision
        self._mp = mp
        self.use_case = FaceMeshUseCase(use_case)
        self.stream_mode = stream_mode
        options = vision.FaceLandmarkerOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=model_path),
            running_mode=(vision.RunningMode.VIDEO if stream_mode else vision.RunningMode.IMAGE),
            num_faces=max_faces,
        )
        self.landmarker = vision.FaceLandmarker.create_from_options(options)

    def detect(self, frame: np.ndarray) -> list[FaceMesh]:
        h, w = frame.shape[:2]
        image = to_mp_image(self._mp, frame)
        if self.stream_mode:
            result = self.landmarker.detect_for_video(image, self._next_timestamp_ms())
        else:
            result = self.landmarker.detect(image)
        with_points = self.use_case == FaceMeshUseCase.FACE_MESH
        return [
            face_mesh_from_landmarks(face, w, h, with_points=with_points)
            for face in (result.face_landmarks or [])
        ]

    def close(self) -> None:
        super().close()
        self.landmarker.close()
