from __future__ import annotations

from dashcam.core.classification.classifier import ClassificationResult

DEFAULT_ENTER_THRESHOLD = 6.0
DEFAULT_EXIT_THRESHOLD = 4.0


class RepetitionCounter:
    """Counts repetitions of a pose class.

    A repetition is counted when the class confidence rises above
    `enter_threshold` and later falls below `exit_threshold`.
    """

    def __init__(
        self,
        class_name: str,
        enter_threshold: float = DEFAULT_ENTER_THRESHOLD,
        exit_threshold: float = DEFAULT_EXIT_THRESHOLD,
    ) -> None:
        self.class_name = class_name
        self.enter_threshold = enter_threshold
        self.exit_threshold = exit_threshold
        self.num_repeats = 0
        self.pose_entered = False

    def add_classification_result(self, result: ClassificationResult) -> int:
        confidence = result.class_confidence(self.class_name)

        if not self.pose_entered:
            self.pose_entered = confidence > self.enter_threshold
            return self.num_repeats

        if confidence < self.exit_threshold:
            self.num_repeats += 1
            self.pose_entered = False

        return self.num_repeats
