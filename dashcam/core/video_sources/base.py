"""Camera / file / RTSP frame sources.

The engine reads frames through `VideoSource` so the capture backend can be
swapped without touching the vision processor.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod

import cv2

from dashcam.core.types import Frame

logger = logging.getLogger(__name__)

WEBCAM_WIDTH = 640
WEBCAM_HEIGHT = 480
WEBCAM_FPS = 30


class VideoSource(ABC):
    """Base interface for anything that can produce video frames."""

    @abstractmethod
    def read(self) -> Frame | None:
        """Return the next frame, or `None` when unavailable."""

        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release any underlying resources."""

        raise NotImplementedError


class OpenCVSource(VideoSource):
    """A `VideoSource` backed by `cv2.VideoCapture`."""

    def __init__(self, source: str | int) -> None:
        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            raise RuntimeError(f"Failed to open video source: {source}")

    def read(self) -> Frame | None:
        ok, frame = self.cap.read()
        if not ok:
            return None
        return frame

    def close(self) -> None:
        self.cap.release()


class WebcamSource(OpenCVSource):
    """Webcam capture that always hands out the newest frame.

    A reader thread drains the driver buffer so a slow processor never works on
    stale frames (the preview behaves like a camera app, not a recorder).
    """

    def __init__(self, index: int = 0) -> None:
        super().__init__(index)
        for prop, value in (
            (cv2.CAP_PROP_BUFFERSIZE, 1),
            (cv2.CAP_PROP_FRAME_WIDTH, WEBCAM_WIDTH),
            (cv2.CAP_PROP_FRAME_HEIGHT, WEBCAM_HEIGHT),
            (cv2.CAP_PROP_FPS, WEBCAM_FPS),
        ):
            self.cap.set(prop, value)
        logger.info("Opened camera index=%s", index)

        self._lock = threading.Lock()
        self._running = True
        self._latest: Frame | None = None
        self._seq = 0
        self._delivered_seq = 0
        self._reader_thread = threading.Thread(target=self._reader_loop, daemon=True)
        self._reader_thread.start()

    def _reader_loop(self) -> None:
        while self._running:
            ok, frame = self.cap.read()
            if not ok:
                time.sleep(0.01)
                continue
            with self._lock:
                self._latest = frame
                self._seq += 1

    def read(self) -> Frame | None:
        with self._lock:
            frame, seq = self._latest, self._seq
        if frame is None or seq == self._delivered_seq:
            return None
        self._delivered_seq = seq
        return frame

    def close(self) -> None:
        self._running = False
        if self._reader_thread.is_alive():
            self._reader_thread.join(timeout=1)
        self.cap.release()


class FileSource(OpenCVSource):
    """Video file played back at its native FPS, looping at EOF."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self._path = path
        fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self._source_fps = fps if fps > 0.0 else None
        self._start_perf: float | None = None
        self._frame_index = 0

    def _pace(self) -> None:
        if self._source_fps is None or self._start_perf is None:
            return
        delay = self._frame_index / self._source_fps - (time.perf_counter() - self._start_perf)
        if delay > 0:
            time.sleep(delay)

    def _rewind(self) -> bool:
        if not self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0):
            # Some backends ignore seeking; reopen instead.
            self.cap.release()
            self.cap = cv2.VideoCapture(self._path)
            if not self.cap.isOpened():
                return False
        self._start_perf = time.perf_counter()
        self._frame_index = 0
        return True

    def read(self) -> Frame | None:
        if self._start_perf is None:
            self._start_perf = time.perf_counter()

        ok, frame = self.cap.read()
        if not ok:
            if not self._rewind():
                return None
            ok, frame = self.cap.read()
            if not ok:
                return None
        self._frame_index += 1
        self._pace()
        return frame


class RTSPSource(OpenCVSource):
    """RTSP stream source, preferring the FFmpeg backend."""

    def __init__(self, url: str) -> None:
        backend = getattr(cv2, "CAP_FFMPEG", None)
        cap = cv2.VideoCapture(url, backend) if backend is not None else cv2.VideoCapture(url)
        if not cap.isOpened():
            cap.release()
            cap = cv2.VideoCapture(url)
        if not cap.isOpened():
            raise RuntimeError(f"Failed to open RTSP source: {url}")
        self.cap = cap
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
