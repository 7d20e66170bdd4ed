"""Pose embedding used by the k-NN pose classifier.

Landmarks are normalized for translation (hip center at the origin) and scale
(pose size), then reduced to a fixed list of 3D distance vectors between joints.
"""

from __future__ import annotations

import numpy as np

from dashcam.core.detectors import pose as lm

# Multiplier applied to the torso size to get the minimal body size.
TORSO_MULTIPLIER = 2.5


def _average(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return (a + b) * 0.5


def pose_size(landmarks: np.ndarray) -> float:
    """Max of torso size * multiplier and the largest 2D hip-center distance."""

    hips_center = _average(landmarks[lm.LEFT_HIP], landmarks[lm.RIGHT_HIP])
    shoulders_center = _average(landmarks[lm.LEFT_SHOULDER], landmarks[lm.RIGHT_SHOULDER])
    torso_size = float(np.linalg.norm((hips_center - shoulders_center)[:2]))

    max_distance = torso_size * TORSO_MULTIPLIER
    dists = np.linalg.norm((landmarks - hips_center)[:, :2], axis=1)
    if dists.size:
        max_distance = max(max_distance, float(dists.max()))
    return max_distance


def normalize(landmarks: np.ndarray) -> np.ndarray:
    landmarks = np.asarray(landmarks, dtype=np.float64)
    center = _average(landmarks[lm.LEFT_HIP], landmarks[lm.RIGHT_HIP])
    normalized = landmarks - center
    size = pose_size(normalized)
    if size > 0:
        normalized = normalized / size
    # x100 only makes values easier to read while debugging.
    return normalized * 100.0


def _distance(landmarks: np.ndarray, start: int, end: int) -> np.ndarray:
    return landmarks[end] - landmarks[start]


def _average_distance(landmarks: np.ndarray, start: tuple[int, int], end: tuple[int, int]) -> np.ndarray:
    return _average(landmarks[end[0]], landmarks[end[1]]) - _average(
        landmarks[start[0]], landmarks[start[1]]
    )


def embedding_from_normalized(n: np.ndarray) -> np.ndarray:
    """Return the (23, 3) joint-pair embedding for normalized landmarks."""

    vectors = [
        # Body center.
        _average_distance(n, (lm.LEFT_HIP, lm.RIGHT_HIP), (lm.LEFT_SHOULDER, lm.RIGHT_SHOULDER)),
        # One joint.
        _distance(n, lm.LEFT_SHOULDER, lm.LEFT_ELBOW),
        _distance(n, lm.RIGHT_SHOULDER, lm.RIGHT_ELBOW),
        _distance(n, lm.LEFT_ELBOW, lm.LEFT_WRIST),
        _distance(n, lm.RIGHT_ELBOW, lm.RIGHT_WRIST),
        _distance(n, lm.LEFT_HIP, lm.LEFT_KNEE),
        _distance(n, lm.RIGHT_HIP, lm.RIGHT_KNEE),
        _distance(n, lm.LEFT_KNEE, lm.LEFT_ANKLE),
        _distance(n, lm.RIGHT_KNEE, lm.RIGHT_ANKLE),
        # Two joints.
        _distance(n, lm.LEFT_SHOULDER, lm.LEFT_WRIST),
        _distance(n, lm.RIGHT_SHOULDER, lm.RIGHT_WRIST),
        _distance(n, lm.LEFT_HIP, lm.LEFT_ANKLE),
        _distance(n, lm.RIGHT_HIP, lm.RIGHT_ANKLE),
        # Four joints.
        _distance(n, lm.LEFT_HIP, lm.LEFT_WRIST),
        _distance(n, lm.RIGHT_HIP, lm.RIGHT_WRIST),
        # Five joints.
        _distance(n, lm.LEFT_SHOULDER, lm.LEFT_ANKLE),
        _distance(n, lm.RIGHT_SHOULDER, lm.RIGHT_ANKLE),
        _distance(n, lm.LEFT_HIP, lm.LEFT_WRIST),
        _distance(n, lm.RIGHT_HIP, lm.RIGHT_WRIST),
        # Cross body.
        _distance(n, lm.LEFT_ELBOW, lm.RIGHT_ELBOW),
        _distance(n, lm.LEFT_KNEE, lm.RIGHT_KNEE),
        _distance(n, lm.LEFT_WRIST, lm.RIGHT_WRIST),
        _distance(n, lm.LEFT_ANKLE, lm.RIGHT_ANKLE),
    ]
    return np.stack(vectors)


def pose_embedding(landmarks: np.ndarray) -> np.ndarray:
    """Embedding of a (33, 3) landmark array."""

    return embedding_from_normalized(normalize(landmarks))
