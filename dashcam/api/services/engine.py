from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import AsyncGenerator
from dataclasses import replace
from pathlib import Path
from queue import Empty, Queue

import cv2
import numpy as np

from dashcam.core.classification.processor import PoseClassifierProcessor
from dashcam.core.config.settings import DashcamSettings
from dashcam.core.detectors.face_mesh import FaceMeshDetector
from dashcam.core.detectors.movenet import MoveNetMultiPose
from dashcam.core.detectors.objects import ObjectDetector
from dashcam.core.detectors.pose import PoseDetector
from dashcam.core.overlay.draw import OverlayOptions, draw_overlays
from dashcam.core.pipeline import DashcamProcessor
from dashcam.core.types import FrameSummary
from dashcam.core.video_sources.base import FileSource, RTSPSource, VideoSource, WebcamSource

logger = logging.getLogger(__name__)


def build_processor(settings: DashcamSettings) -> DashcamProcessor:
    """Create a `DashcamProcessor` with the detectors enabled in `settings`."""

    pose_detector = None
    if settings.enable_pose:
        pose_detector = PoseDetector(
            settings.pose_model_path,
            stream_mode=settings.stream_mode,
            min_detection_confidence=settings.pose_min_confidence,
        )

    object_detector = None
    if settings.enable_objects:
        object_detector = ObjectDetector(
            settings.object_model_name,
            conf=settings.object_confidence,
            stream_mode=settings.stream_mode,
            enable_multiple_objects=settings.enable_multiple_objects,
            enable_classification=settings.enable_object_classification,
        )

    face_mesh_detector = None
    if settings.enable_face_mesh:
        face_mesh_detector = FaceMeshDetector(
            settings.face_mesh_model_path,
            use_case=settings.face_mesh_use_case,
            stream_mode=settings.stream_mode,
        )

    movenet_detector = None
    if settings.enable_movenet:
        movenet_detector = MoveNetMultiPose.create(
            settings.movenet_model_path,
            device=settings.movenet_device,
            model_type=settings.movenet_model_type,
        )
        movenet_detector.set_tracker(settings.movenet_tracker)

    classifier_processor = None
    if settings.enable_pose and settings.enable_pose_classification:
        classifier_processor = PoseClassifierProcessor(
            settings.pose_samples_path,
            stream_mode=settings.stream_mode,
            pose_classes=settings.pose_classes,
        )

    return DashcamProcessor(
        pose_detector=pose_detector,
        object_detector=object_detector,
        face_mesh_detector=face_mesh_detector,
        movenet_detector=movenet_detector,
        classifier_processor=classifier_processor,
    )


class VideoEngine:
    """Runs the capture -> process -> encode pipeline on background threads.

    - capture thread keeps only the newest frame
    - process thread runs `DashcamProcessor.process()` and draws overlays
    - encode thread JPEG-encodes frames and drops old frames under load
    """

    def __init__(self, settings: DashcamSettings) -> None:
        self.settings = settings
        self.last_error: str | None = None
        self.processor: DashcamProcessor | None = None
        try:
            self.processor = build_processor(settings)
        except Exception:
            self.last_error = "Failed to load models"
            logger.exception(self.last_error)
        self.overlay_options = OverlayOptions(
            show_in_frame_likelihood=settings.show_in_frame_likelihood,
            visualize_z=settings.visualize_z,
            rescale_z_for_visualization=settings.rescale_z_for_visualization,
        )
        if settings.target_fps is not None:
            self._target_fps = float(settings.target_fps)
        elif settings.video_source == "webcam":
            self._target_fps = 15.0
        elif settings.video_source == "file":
            # FileSource already paces playback to the file's FPS.
            self._target_fps = 0.0
        else:
            self._target_fps = 30.0

        self._processed_fps = 0.0
        self._processed_times: deque[float] = deque()
        self._processed_fps_min_span_s = 0.25
        self._camera_fps = 0.0
        self._camera_alpha = 0.2
        self._last_captured_at: float | None = None

        self.source: VideoSource | None = None
        self.running = False
        self._capture_thread: threading.Thread | None = None
        self._process_thread: threading.Thread | None = None
        self._encode_thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._latest_frame: bytes | None = None
        self._latest_summary: FrameSummary | None = None
        self._latest_stream_summary: FrameSummary | None = None
        self._capture_lock = threading.Lock()
        self._capture_event = threading.Event()
        self._latest_captured_frame: np.ndarray | None = None
        self._encode_queue: Queue[tuple[np.ndarray, FrameSummary]] = Queue(maxsize=1)

    def _make_source(self) -> VideoSource:
        """Instantiate the configured `VideoSource`."""

        if self.settings.video_source == "file" and self.settings.video_path:
            video_path = Path(self.settings.video_path)
            if not video_path.exists():
                raise RuntimeError(f"Video path not found: {video_path}")
            return FileSource(str(video_path))
        if self.settings.video_source == "rtsp" and self.settings.rtsp_url:
            return RTSPSource(self.settings.rtsp_url)
        return WebcamSource(0)

    def start(self) -> None:
        """Start background threads; calling again while running is a no-op."""

        if self.running or self.processor is None:
            return
        try:
            self.source = self._make_source()
        except Exception:
            self.last_error = "Failed to initialize video source"
            logger.exception(self.last_error)
            return
        self.running = True
        self.last_error = None
        self._capture_event.clear()
        self._capture_thread = threading.Thread(target=self._capture_loop, daemon=True)
        self._process_thread = threading.Thread(target=self._process_loop, daemon=True)
        self._encode_thread = threading.Thread(target=self._encode_loop, daemon=True)
        self._capture_thread.start()
        self._process_thread.start()
        self._encode_thread.start()

    def stop(self) -> None:
        """Stop background threads, close the source and release the detectors."""

        self.running = False
        self._capture_event.set()
        for thread in (self._capture_thread, self._process_thread, self._encode_thread):
            if thread and thread.is_alive():
                thread.join(timeout=2)
        if self.source:
            self.source.close()
        if self.processor is not None:
            self.processor.stop()

    def _capture_loop(self) -> None:
        logger.debug("Capture loop started")
        while self.running and self.source:
            frame = self.source.read()
            if frame is None:
                time.sleep(0.02)
                continue
            now = time.perf_counter()
            with self._lock:
                if self._last_captured_at is not None:
                    dt = now - self._last_captured_at
                    if dt > 0:
                        instant = 1.0 / dt
                        self._camera_fps = (
                            instant
                            if self._camera_fps == 0.0
                            else self._camera_fps * (1.0 - self._camera_alpha) + instant * self._camera_alpha
                        )
                self._last_captured_at = now
            with self._capture_lock:
                self._latest_captured_frame = frame
            self._capture_event.set()

    def _update_processed_fps(self) -> None:
        now = time.perf_counter()
        self._processed_times.append(now)
        while self._processed_times and (now - self._processed_times[0]) > 1.0:
            self._processed_times.popleft()
        if len(self._processed_times) >= 2:
            span = now - self._processed_times[0]
            if span >= self._processed_fps_min_span_s:
                self._processed_fps = float((len(self._processed_times) - 1) / span)

    def _process_loop(self) -> None:
        logger.debug("Process loop started")
        while self.running:
            if not self._capture_event.wait(timeout=0.5):
                continue
            with self._capture_lock:
                frame = self._latest_captured_frame
                self._latest_captured_frame = None
                self._capture_event.clear()
            if frame is None:
                continue

            self._process_frame(frame)

    def _process_frame(self, frame: np.ndarray) -> None:
        start = time.perf_counter()
        try:
            if self.settings.profile_steps:
                summary, processed, timings = self.processor.process_with_profile(
                    frame, inference_stride=self.settings.inference_stride
                )
                summary = replace(summary, profile=dict(timings))
            else:
                summary, processed = self.processor.process(
                    frame, inference_stride=self.settings.inference_stride
                )
            self.last_error = None
        except Exception:
            self.last_error = "Frame processing failed"
            logger.exception(self.last_error)
            return
        duration = time.perf_counter() - start

        self._update_processed_fps()
        summary = replace(summary, fps=float(self._processed_fps))
        with self._lock:
            self._latest_summary = summary

        annotated = (
            draw_overlays(processed, summary, self.overlay_options)
            if self.settings.enable_backend_overlays
            else processed
        )

        if self._encode_queue.full():
            try:
                self._encode_queue.get_nowait()
            except Empty:
                pass
        self._encode_queue.put_nowait((annotated, summary))

        if self._target_fps > 0:
            remaining = (1.0 / self._target_fps) - duration
            if remaining > 0:
                time.sleep(remaining)

    def _encode_loop(self) -> None:
        logger.debug("Encode loop started")
        while self.running:
            try:
                annotated, summary = self._encode_queue.get(timeout=0.5)
            except Empty:
                continue
            try:
                self._encode_frame(annotated, summary)
            except Exception:
                logger.exception("JPEG encoding failed")

    def _encode_frame(self, annotated: np.ndarray, summary: FrameSummary) -> None:
        out_w = self.settings.output_width
        if out_w:
            h0, w0 = annotated.shape[:2]
            if w0 > out_w:
                out_h = max(1, int(h0 * out_w / float(w0)))
                annotated = cv2.resize(annotated, (out_w, out_h), interpolation=cv2.INTER_LINEAR)

        ok, jpg = cv2.imencode(".jpg", annotated, [int(cv2.IMWRITE_JPEG_QUALITY), self.settings.jpeg_quality])
        if not ok:
            return
        with self._lock:
            self._latest_frame = jpg.tobytes()
            self._latest_stream_summary = summary

    def latest_frame(self) -> bytes | None:
        """Return the latest encoded JPEG bytes (or `None` if not ready)."""

        with self._lock:
            return self._latest_frame

    def latest_summary(self) -> FrameSummary | None:
        """Return the latest processed summary (not necessarily aligned to JPEG)."""

        with self._lock:
            return self._latest_summary

    def latest_stream_summary(self) -> FrameSummary | None:
        """Return the summary aligned with the latest encoded frame."""

        with self._lock:
            return self._latest_stream_summary

    def stream_fps(self) -> float:
        """Approximate input FPS based on capture timestamps."""

        with self._lock:
            return float(self._camera_fps)

    async def mjpeg_generator(self) -> AsyncGenerator[bytes, None]:
        """Yield MJPEG multipart chunks for HTTP streaming."""

        last_sent = None
        while True:
            frame = self.latest_frame()
            if frame is not None and frame is not last_sent:
                yield b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + frame + b"\r\n"
                last_sent = frame
            await asyncio.sleep(0.02)

    async def metadata_stream(self) -> AsyncGenerator[FrameSummary, None]:
        """Yield per-frame summaries for WebSocket streaming."""

        last_id = -1
        while True:
            summary = self.latest_stream_summary() or self.latest_summary()
            if summary and summary.frame_id != last_id:
                last_id = summary.frame_id
                yield summary
            await asyncio.sleep(0.02)
