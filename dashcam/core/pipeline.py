"""Compound vision processor.

Runs every enabled detector concurrently on a frame, gathers their results into
one `CompoundDetection`, and classifies the detected pose on a dedicated worker.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Protocol

import numpy as np

from dashcam.core.classification.processor import PoseClassifierProcessor
from dashcam.core.types import CompoundDetection, FrameSummary, Pose

logger = logging.getLogger(__name__)

LATENCY_LOG_EVERY_N_RUNS = 100


class FrameDetector(Protocol):
    """Minimal detector interface expected by `DashcamProcessor`."""

    def process(self, frame: np.ndarray) -> Future[Any]:
        """Start detection on `frame` and return a Future of the result."""

    def close(self) -> None:
        """Release model resources."""


class DashcamProcessor:
    """End-to-end per-frame processing for the four vision pipelines.

    Any detector may be None, which disables that pipeline. A detector that fails
    on a frame leaves its member of the result None; the other results are kept.
    """

    def __init__(
        self,
        pose_detector: FrameDetector | None = None,
        object_detector: FrameDetector | None = None,
        face_mesh_detector: FrameDetector | None = None,
        movenet_detector: FrameDetector | None = None,
        classifier_processor: PoseClassifierProcessor | None = None,
    ) -> None:
        self.detectors: dict[str, FrameDetector | None] = {
            "pose": pose_detector,
            "objects": object_detector,
            "face_meshes": face_mesh_detector,
            "persons": movenet_detector,
        }
        self.classifier_processor = classifier_processor
        self._classification_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="pose-classification"
        )
        self.frame_id = 0
        self._last_fps_at = time.perf_counter()
        self._fps = 0.0
        self._last_detection = CompoundDetection()

        self._num_runs = 0
        self._total_run_ms = 0.0
        self._max_run_ms = 0.0
        self._min_run_ms = float("inf")
        self._last_run_ms = 0.0

    def _detect_internal(
        self, frame: np.ndarray, timings: dict[str, float] | None
    ) -> CompoundDetection:
        start = time.perf_counter()
        done_at: dict[str, float] = {}

        futures: dict[str, Future[Any]] = {}
        for name, detector in self.detectors.items():
            if detector is None:
                continue
            try:
                fut = detector.process(frame)
            except Exception:
                logger.exception("Failed to start %s detection", name)
                continue
            fut.add_done_callback(lambda _f, n=name: done_at.__setitem__(n, time.perf_counter()))
            futures[name] = fut

        results: dict[str, Any] = {}
        for name, fut in futures.items():
            try:
                results[name] = fut.result()
            except Exception:
                logger.exception("%s detection failed", name)

        classification: list[str] | None = None
        if self.classifier_processor is not None:
            pose: Pose | None = results.get("pose")
            t_cls0 = time.perf_counter()
            try:
                classification = self._classification_executor.submit(
                    self.classifier_processor.get_pose_result, pose
                ).result()
            except Exception:
                logger.exception("Pose classification failed")
            if timings is not None:
                timings["classification_ms"] = (time.perf_counter() - t_cls0) * 1000.0

        if timings is not None:
            for name, t in list(done_at.items()):
                timings[f"{name}_ms"] = (t - start) * 1000.0

        return CompoundDetection(
            pose=results.get("pose"),
            classification=classification,
            objects=results.get("objects"),
            face_meshes=results.get("face_meshes"),
            persons=results.get("persons"),
        )

    def detect(self, frame: np.ndarray) -> CompoundDetection:
        """Run all enabled pipelines on `frame` and wait for every result."""

        return self._detect_internal(frame, None)

    def _record_latency(self, run_ms: float) -> None:
        self._num_runs += 1
        self._total_run_ms += run_ms
        self._max_run_ms = max(self._max_run_ms, run_ms)
        self._min_run_ms = min(self._min_run_ms, run_ms)
        self._last_run_ms = run_ms
        if self._num_runs % LATENCY_LOG_EVERY_N_RUNS == 0:
            stats = self.latency_stats()
            logger.debug(
                "Num of runs: %d, max latency: %.1f ms, min latency: %.1f ms, avg latency: %.1f ms",
                self._num_runs,
                stats["max_ms"],
                stats["min_ms"],
                stats["avg_ms"],
            )

    def latency_stats(self) -> dict[str, float]:
        """Detector latency statistics over all runs so far."""

        if self._num_runs == 0:
            return {"runs": 0.0, "min_ms": 0.0, "max_ms": 0.0, "avg_ms": 0.0, "last_ms": 0.0}
        return {
            "runs": float(self._num_runs),
            "min_ms": self._min_run_ms,
            "max_ms": self._max_run_ms,
            "avg_ms": self._total_run_ms / self._num_runs,
            "last_ms": self._last_run_ms,
        }

    def _process_internal(
        self,
        frame: np.ndarray,
        inference_stride: int,
        profile: bool,
    ) -> tuple[FrameSummary, np.ndarray, dict[str, float]]:
        timings: dict[str, float] = {}
        t_all0 = time.perf_counter()
        self.frame_id += 1

        do_infer = inference_stride <= 1 or (self.frame_id % inference_stride == 0)
        if profile:
            timings["do_infer"] = 1.0 if do_infer else 0.0

        if do_infer:
            t_det0 = time.perf_counter()
            detection = self._detect_internal(frame, timings if profile else None)
            run_ms = (time.perf_counter() - t_det0) * 1000.0
            self._record_latency(run_ms)
            if profile:
                timings["detect_ms"] = run_ms
            self._last_detection = detection
        else:
            detection = self._last_detection
            if profile:
                timings["detect_ms"] = 0.0

        now_perf = time.perf_counter()
        dt = now_perf - self._last_fps_at
        if dt > 0:
            instant_fps = 1.0 / dt
            alpha = 0.1
            self._fps = (
                instant_fps if self._fps == 0 else (self._fps * (1.0 - alpha) + instant_fps * alpha)
            )
        self._last_fps_at = now_perf

        h, w = frame.shape[:2]
        summary = FrameSummary(
            frame_id=self.frame_id,
            timestamp=time.time(),
            detection=detection,
            fps=self._fps,
            frame_size=(w, h),
            latency=self.latency_stats(),
        )

        if profile:
            timings["pipeline_ms"] = (time.perf_counter() - t_all0) * 1000.0
        return summary, frame, timings

    def process(
        self,
        frame: np.ndarray,
        inference_stride: int = 1,
    ) -> tuple[FrameSummary, np.ndarray]:
        """Process a frame and return (summary, output_frame).

        Args:
            frame: Input BGR frame.
            inference_stride: Run detectors every N frames; skipped frames reuse
                the last compound detection.
        """

        summary, out_frame, _timings = self._process_internal(
            frame, inference_stride=inference_stride, profile=False
        )
        return summary, out_frame

    def process_with_profile(
        self,
        frame: np.ndarray,
        inference_stride: int = 1,
    ) -> tuple[FrameSummary, np.ndarray, dict[str, float]]:
        """Process a frame and return (summary, output_frame, timings in ms)."""

        return self._process_internal(frame, inference_stride=inference_stride, profile=True)

    def stop(self) -> None:
        """Close every detector; close errors are logged, not raised."""

        for name, detector in self.detectors.items():
            if detector is None:
                continue
            try:
                detector.close()
            except Exception:
                logger.exception("Exception thrown while trying to close %s detector", name)
        self._classification_executor.shutdown(wait=True)
