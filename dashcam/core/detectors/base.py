"""Common plumbing for detector adapters.

Each adapter owns a single worker thread; `process()` returns a Future so the
processor can run all pipelines concurrently and gather their results.
"""

from __future__ import annotations

import importlib
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Generic, TypeVar

import cv2
import numpy as np

T = TypeVar("T")


def load_mediapipe() -> Any:
    """Import MediaPipe on first use (it is heavy and only needed by real detectors)."""

    return importlib.import_module("mediapipe")


def to_mp_image(mp: Any, frame: np.ndarray) -> Any:
    """Wrap a BGR OpenCV frame as an SRGB `mediapipe.Image`."""

    rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    return mp.Image(image_format=mp.ImageFormat.SRGB, data=np.ascontiguousarray(rgb))


class AsyncDetector(ABC, Generic[T]):
    """Detector with a synchronous `detect` and a Future-returning `process`."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)
        self._last_timestamp_ms = -1

    @abstractmethod
    def detect(self, frame: np.ndarray) -> T:
        raise NotImplementedError

    def process(self, frame: np.ndarray) -> Future[T]:
        return self._executor.submit(self.detect, frame)

    def _next_timestamp_ms(self) -> int:
        """Monotonically increasing timestamp required by VIDEO running mode."""

        now = int(time.monotonic() * 1000)
        self._last_timestamp_ms = max(now, self._last_timestamp_ms + 1)
        return self._last_timestamp_ms

    def close(self) -> None:
        self._executor.shutdown(wait=True)
