"""Pose classification with optional smoothing and repetition counting.

Produces the display strings drawn above the pose skeleton:
`"<class> : <n> reps"` and `"<class> : <c> confidence"`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from dashcam.core.classification.classifier import (
    ClassificationResult,
    PoseClassifier,
    PoseSample,
    load_pose_samples,
)
from dashcam.core.classification.repetition import RepetitionCounter
from dashcam.core.classification.smoothing import EMASmoothing
from dashcam.core.types import Pose

logger = logging.getLogger(__name__)

PUSHUPS_CLASS = "pushups_down"
SQUATS_CLASS = "squats_down"
DEFAULT_POSE_CLASSES = (PUSHUPS_CLASS, SQUATS_CLASS)
DEFAULT_SAMPLES_PATH = "models/fitness_pose_samples.csv"


class PoseClassifierProcessor:
    """Not thread-safe: call from a single worker thread."""

    def __init__(
        self,
        samples: str | Path | Iterable[PoseSample] = DEFAULT_SAMPLES_PATH,
        stream_mode: bool = True,
        pose_classes: Sequence[str] = DEFAULT_POSE_CLASSES,
    ) -> None:
        if isinstance(samples, (str, Path)):
            samples = load_pose_samples(samples)
        self.classifier = PoseClassifier(samples)
        self.stream_mode = stream_mode
        self.ema_smoothing: EMASmoothing | None = None
        self.rep_counters: list[RepetitionCounter] = []
        self.last_rep_result = ""
        if stream_mode:
            self.ema_smoothing = EMASmoothing()
            self.rep_counters = [RepetitionCounter(c) for c in pose_classes]

    def get_pose_result(self, pose: Pose | None) -> list[str]:
        result: list[str] = []
        has_pose = pose is not None and bool(pose.landmarks)
        classification = self.classifier.classify(pose) if has_pose else ClassificationResult()

        if self.stream_mode and self.ema_smoothing is not None:
            classification = self.ema_smoothing.get_smoothed_result(classification)

            # No pose: keep showing the last repetition count.
            if not has_pose:
                result.append(self.last_rep_result)
                return result

            for counter in self.rep_counters:
                reps_before = counter.num_repeats
                reps_after = counter.add_classification_result(classification)
                if reps_after > reps_before:
                    logger.info("Repetition: %s -> %d", counter.class_name, reps_after)
                    self.last_rep_result = f"{counter.class_name} : {reps_after} reps"
                    break
            result.append(self.last_rep_result)

        if has_pose:
            max_class = classification.max_confidence_class()
            if max_class is not None:
                confidence = classification.class_confidence(max_class) / self.classifier.confidence_range()
                result.append(f"{max_class} : {confidence:.2f} confidence")

        return result
