"""Ultralytics YOLO object detector integration.

Detections can be reduced to the single most confident object and stripped of
class labels. In stream mode they carry tracking ids across frames.
"""

from __future__ import annotations

import importlib
import os
from contextlib import nullcontext
from typing import Any

import numpy as np
from ultralytics import YOLO

from dashcam.core.detectors.base import AsyncDetector
from dashcam.core.trackers.simple_tracker import SimpleTracker
from dashcam.core.types import DetectedObject, ObjectLabel

DEFAULT_MODEL = "yolo11n.pt"


def _label_text(names: dict[int, str] | list[str], cls_id: int) -> str:
    if isinstance(names, dict):
        return str(names.get(cls_id, cls_id))
    if 0 <= cls_id < len(names):
        return str(names[cls_id])
    return str(cls_id)


def objects_from_arrays(
    xyxy: np.ndarray,
    confs: np.ndarray,
    classes: np.ndarray,
    names: dict[int, str] | list[str],
    *,
    enable_multiple_objects: bool = True,
    enable_classification: bool = True,
) -> list[DetectedObject]:
    """Build `DetectedObject`s from detector arrays.

    Without multiple-object mode only the most confident detection is kept.
    Without classification the objects carry no labels.
    """

    if len(xyxy) == 0:
        return []

    order = np.argsort(-np.asarray(confs, dtype=np.float64), kind="stable")
    if not enable_multiple_objects:
        order = order[:1]

    out: list[DetectedObject] = []
    for i in order:
        bbox = xyxy[i]
        labels: list[ObjectLabel] = []
        if enable_classification:
            cls_id = int(classes[i])
            labels.append(
                ObjectLabel(text=_label_text(names, cls_id), confidence=float(confs[i]), index=cls_id)
            )
        out.append(
            DetectedObject(
                bbox=(float(bbox[0]), float(bbox[1]), float(bbox[2]), float(bbox[3])),
                labels=labels,
            )
        )
    return out


class ObjectDetector(AsyncDetector[list[DetectedObject]]):
    """Object detector wrapper around Ultralytics YOLO.

    Returns every detection or only the most confident one
    (`enable_multiple_objects`), with or without class labels
    (`enable_classification`). Runs on CPU; torch thread
    counts can be tuned via `DASHCAM_TORCH_THREADS` and
    `DASHCAM_TORCH_INTEROP_THREADS`. In stream mode, detections get stable
    `tracking_id`s from a `SimpleTracker`.
    """

    _torch_threads_configured: bool = False

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        conf: float = 0.5,
        stream_mode: bool = True,
        enable_multiple_objects: bool = True,
        enable_classification: bool = True,
    ) -> None:
        super().__init__("objects")
        self._configure_torch_threads_from_env()

        self.model_name = model_name
        self.is_onnx = model_name.lower().endswith(".onnx")
        self.device: str = "cpu"
        self.conf = conf
        self.stream_mode = stream_mode
        self.enable_multiple_objects = enable_multiple_objects
        self.enable_classification = enable_classification
        self.tracker: SimpleTracker | None = SimpleTracker() if stream_mode else None

        self._torch_inference_mode: Any | None = None
        if not self.is_onnx:
            try:
                torch = importlib.import_module("torch")
                self._torch_inference_mode = torch.inference_mode
            except ImportError:
                self._torch_inference_mode = None
        self.model = YOLO(model_name, task="detect")
        self._predict_kwargs = {"conf": self.conf, "verbose": False, "device": self.device}

    @classmethod
    def _configure_torch_threads_from_env(cls) -> None:
        """Configure torch thread counts from environment variables (one-time)."""

        if cls._torch_threads_configured:
            return
        cls._torch_threads_configured = True

        threads_s = os.getenv("DASHCAM_TORCH_THREADS")
        interop_s = os.getenv("DASHCAM_TORCH_INTEROP_THREADS")
        if threads_s is None and interop_s is None:
            return

        try:
            torch = importlib.import_module("torch")
            if threads_s is not None and threads_s.strip():
                torch.set_num_threads(max(1, int(threads_s)))
            if interop_s is not None and interop_s.strip():
                torch.set_num_interop_threads(max(1, int(interop_s)))
        except (ImportError, RuntimeError, ValueError):
            return

    def detect(self, frame: np.ndarray) -> list[DetectedObject]:
        """Run inference on a single BGR frame and return objects in pixel coordinates."""

        infer_ctx = (
            self._torch_inference_mode()
            if self._torch_inference_mode is not None
            else nullcontext()
        )
        with infer_ctx:
            results = self.model.predict(frame, **self._predict_kwargs)

        objects = self._parse_results(results)
        if self.tracker is not None:
            objects = self.tracker.update(objects)
        return objects

    def _parse_results(self, results: Any) -> list[DetectedObject]:
        if not results:
            return []
        result = results[0]
        boxes = getattr(result, "boxes", None)
        if boxes is None:
            return []

        data = getattr(boxes, "data", None)
        if data is None:
            return []
        if hasattr(data, "cpu"):
            data = data.cpu()
        data_np = data.numpy() if hasattr(data, "numpy") else np.asarray(data)
        # Boxes.data = (x1, y1, x2, y2, conf, cls)
        if data_np.ndim != 2 or data_np.shape[1] < 6:
            return []

        names = getattr(result, "names", None) or getattr(self.model, "names", {}) or {}
        return objects_from_arrays(
            data_np[:, :4],
            data_np[:, 4],
            data_np[:, 5],
            names,
            enable_multiple_objects=self.enable_multiple_objects,
            enable_classification=self.enable_classification,
        )
