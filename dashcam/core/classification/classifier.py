"""k-NN pose classifier over pose embeddings.

Classification runs in two passes: samples are first filtered by the maximum
per-axis distance (removes outliers that are almost identical except for one
joint bent the other way), then ranked by mean distance. Each sample among the
final top-K votes for its class.
"""

from __future__ import annotations

import csv
import heapq
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from dashcam.core.classification.embedding import pose_embedding
from dashcam.core.detectors.pose import NUM_LANDMARKS
from dashcam.core.types import Pose

logger = logging.getLogger(__name__)

NUM_DIMS = 3
MAX_DISTANCE_TOP_K = 30
MEAN_DISTANCE_TOP_K = 10
# Z has lower weight as it is generally less accurate than X and Y.
AXES_WEIGHTS = (1.0, 1.0, 0.2)


@dataclass
class PoseSample:
    name: str
    class_name: str
    embedding: np.ndarray

    @classmethod
    def from_csv_row(cls, row: list[str]) -> PoseSample | None:
        """Parse `name, class, x0, y0, z0, ..., x32, y32, z32`.

        Returns None (and logs) for malformed rows.
        """

        expected = NUM_LANDMARKS * NUM_DIMS + 2
        if len(row) != expected:
            logger.error("Invalid number of tokens for PoseSample: %d (expected %d)", len(row), expected)
            return None
        name, class_name = row[0], row[1]
        try:
            coords = np.array([float(v) for v in row[2:]], dtype=np.float64)
        except ValueError:
            logger.error("Invalid value in PoseSample %r", name)
            return None
        landmarks = coords.reshape(NUM_LANDMARKS, NUM_DIMS)
        return cls(name=name, class_name=class_name, embedding=pose_embedding(landmarks))


def load_pose_samples(path: str | Path) -> list[PoseSample]:
    """Load classifier samples from a CSV file; bad rows are skipped."""

    samples: list[PoseSample] = []
    with open(path, encoding="utf-8", newline="") as f:
        for row in csv.reader(f):
            if not row:
                continue
            sample = PoseSample.from_csv_row([tok.strip() for tok in row])
            if sample is not None:
                samples.append(sample)
    logger.info("Loaded %d pose samples from %s", len(samples), path)
    return samples


@dataclass
class ClassificationResult:
    """Per-class confidence; for the k-NN classifier this is a vote count."""

    class_confidences: dict[str, float] = field(default_factory=dict)

    def all_classes(self) -> set[str]:
        return set(self.class_confidences)

    def class_confidence(self, class_name: str) -> float:
        return self.class_confidences.get(class_name, 0.0)

    def max_confidence_class(self) -> str | None:
        if not self.class_confidences:
            return None
        return max(self.class_confidences, key=lambda k: self.class_confidences[k])

    def increment_class_confidence(self, class_name: str) -> None:
        self.class_confidences[class_name] = self.class_confidences.get(class_name, 0.0) + 1.0

    def put_class_confidence(self, class_name: str, confidence: float) -> None:
        self.class_confidences[class_name] = confidence


def pose_landmark_array(pose: Pose) -> np.ndarray:
    return np.array([(p.x, p.y, p.z) for p in pose.landmarks], dtype=np.float64).reshape(-1, 3)


class PoseClassifier:
    def __init__(
        self,
        samples: Iterable[PoseSample],
        max_distance_top_k: int = MAX_DISTANCE_TOP_K,
        mean_distance_top_k: int = MEAN_DISTANCE_TOP_K,
        axes_weights: tuple[float, float, float] = AXES_WEIGHTS,
    ) -> None:
        self.samples = list(samples)
        self.max_distance_top_k = max_distance_top_k
        self.mean_distance_top_k = mean_distance_top_k
        self.axes_weights = np.asarray(axes_weights, dtype=np.float64)

    def confidence_range(self) -> int:
        """Upper bound of a class confidence returned by `classify`."""

        return min(self.max_distance_top_k, self.mean_distance_top_k)

    def classify(self, pose: Pose) -> ClassificationResult:
        return self.classify_landmarks(pose_landmark_array(pose))

    def classify_landmarks(self, landmarks: np.ndarray) -> ClassificationResult:
        result = ClassificationResult()
        if landmarks.shape[0] < NUM_LANDMARKS or not self.samples:
            return result

        embedding = pose_embedding(landmarks)
        flipped = pose_embedding(landmarks * np.array([-1.0, 1.0, 1.0]))

        # Filter by max distance.
        by_max: list[tuple[float, int]] = []
        for i, sample in enumerate(self.samples):
            original_max = float(np.abs((embedding - sample.embedding) * self.axes_weights).max())
            flipped_max = float(np.abs((flipped - sample.embedding) * self.axes_weights).max())
            by_max.append((min(original_max, flipped_max), i))
        top_max = heapq.nsmallest(self.max_distance_top_k, by_max)

        # Rank by mean distance.
        by_mean: list[tuple[float, int]] = []
        for _, i in top_max:
            sample = self.samples[i]
            original_sum = float(np.abs((embedding - sample.embedding) * self.axes_weights).sum())
            flipped_sum = float(np.abs((flipped - sample.embedding) * self.axes_weights).sum())
            mean_distance = min(original_sum, flipped_sum) / (embedding.shape[0] * 2)
            by_mean.append((mean_distance, i))
        top_mean = heapq.nsmallest(self.mean_distance_top_k, by_mean)

        for _, i in top_mean:
            result.increment_class_confidence(self.samples[i].class_name)
        return result
