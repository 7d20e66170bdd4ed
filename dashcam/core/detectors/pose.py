"""Single-person pose detection (MediaPipe BlazePose landmarker)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import numpy as np

from dashcam.core.detectors.base import AsyncDetector, load_mediapipe, to_mp_image
from dashcam.core.types import Pose, PoseLandmark

NUM_LANDMARKS = 33

NOSE = 0
LEFT_EYE_INNER = 1
LEFT_EYE = 2
LEFT_EYE_OUTER = 3
RIGHT_EYE_INNER = 4
RIGHT_EYE = 5
RIGHT_EYE_OUTER = 6
LEFT_EAR = 7
RIGHT_EAR = 8
LEFT_MOUTH = 9
RIGHT_MOUTH = 10
LEFT_SHOULDER = 11
RIGHT_SHOULDER = 12
LEFT_ELBOW = 13
RIGHT_ELBOW = 14
LEFT_WRIST = 15
RIGHT_WRIST = 16
LEFT_PINKY = 17
RIGHT_PINKY = 18
LEFT_INDEX = 19
RIGHT_INDEX = 20
LEFT_THUMB = 21
RIGHT_THUMB = 22
LEFT_HIP = 23
RIGHT_HIP = 24
LEFT_KNEE = 25
RIGHT_KNEE = 26
LEFT_ANKLE = 27
RIGHT_ANKLE = 28
LEFT_HEEL = 29
RIGHT_HEEL = 30
LEFT_FOOT_INDEX = 31
RIGHT_FOOT_INDEX = 32

DEFAULT_MODEL_PATH = "models/pose_landmarker_full.task"


def pose_from_landmarks(landmarks: Sequence[Any], width: int, height: int) -> Pose:
    """Convert normalized MediaPipe landmarks into a pixel-space `Pose`."""

    return Pose(
        landmarks=[
            PoseLandmark(
                index=i,
                x=float(lm.x) * width,
                y=float(lm.y) * height,
                z=float(getattr(lm, "z", 0.0) or 0.0) * width,
                in_frame_likelihood=float(getattr(lm, "visibility", 0.0) or 0.0),
            )
            for i, lm in enumerate(landmarks)
        ]
    )


class PoseDetector(AsyncDetector[Pose]):
    """Pose detector wrapper.

    `stream_mode` uses the VIDEO running mode so landmarks are tracked between
    frames; otherwise every frame is handled as an independent image.
    """

    def __init__(
        self,
        model_path: str = DEFAULT_MODEL_PATH,
        stream_mode: bool = True,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ) -> None:
        super().__init__("pose")
        mp = load_mediapipe()
        vision = mp.tasks.vision
        self._mp = mp
        self.stream_mode = stream_mode
        options = vision.PoseLandmarkerOptions(
            base_options=mp.tasks.BaseOptions(model_asset_path=model_path),
            running_mode=(vision.RunningMode.VIDEO if stream_mode else vision.RunningMode.IMAGE),
            num_poses=1,
            min_pose_detection_confidence=min_detection_confidence,
            min_pose_presence_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
        )
        self.landmarker = vision.PoseLandmarker.create_from_options(options)

    def detect(self, frame: np.ndarray) -> Pose:
        h, w = frame.shape[:2]
        image = to_mp_image(self._mp, frame)
        if self.stream_mode:
            result = self.landmarker.detect_for_video(image, self._next_timestamp_ms())
        else:
            result = self.landmarker.detect(image)
        if not result.pose_landmarks:
            return Pose()
        return pose_from_landmarks(result.pose_landmarks[0], w, h)

    def close(self) -> None:
        super().close()
        self.landmarker.close()
