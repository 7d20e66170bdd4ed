from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable

from dashcam.core.classification.classifier import ClassificationResult

DEFAULT_WINDOW_SIZE = 10
DEFAULT_ALPHA = 0.2
RESET_THRESHOLD_MS = 100


class EMASmoothing:
    """Exponential moving average over a window of classification results.

    The window is cleared when inputs arrive more than `reset_threshold_ms`
    apart, so a stale history never leaks into a new stream.
    """

    def __init__(
        self,
        window_size: int = DEFAULT_WINDOW_SIZE,
        alpha: float = DEFAULT_ALPHA,
        reset_threshold_ms: float = RESET_THRESHOLD_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_size = window_size
        self.alpha = alpha
        self.reset_threshold_ms = reset_threshold_ms
        self._clock = clock
        self._window: deque[ClassificationResult] = deque(maxlen=window_size)
        self._last_input_ms: float = 0.0

    def get_smoothed_result(self, result: ClassificationResult) -> ClassificationResult:
        now_ms = self._clock() * 1000.0
        if now_ms - self._last_input_ms > self.reset_threshold_ms:
            self._window.clear()
        self._last_input_ms = now_ms

        # Newest result first.
        self._window.appendleft(result)

        all_classes: set[str] = set()
        for r in self._window:
            all_classes.update(r.all_classes())

        smoothed = ClassificationResult()
        for class_name in all_classes:
            factor = 1.0
            top_sum = 0.0
            bottom_sum = 0.0
            for r in self._window:
                top_sum += factor * r.class_confidence(class_name)
                bottom_sum += factor
                factor *= 1.0 - self.alpha
            smoothed.put_class_confidence(class_name, top_sum / bottom_sum)
        return smoothed
