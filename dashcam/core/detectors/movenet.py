"""MoveNet MultiPose (LiteRT) integration.

The network itself is a black box run by the LiteRT interpreter; this module
prepares its input tensor, parses the `[1, 6, 56]` output, optionally runs a
tracker, and maps normalized coordinates back to source-image pixels.

Model card notes: H and W of a dynamic-shape model must be a multiple of 32;
the recommended preprocessing scales the larger side to 256 while keeping the
aspect ratio.
"""

from __future__ import annotations

import importlib
import logging
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from typing import Any

import cv2
import numpy as np

from dashcam.core.trackers.base import AbstractTracker
from dashcam.core.trackers.bounding_box import BoundingBoxTracker
from dashcam.core.trackers.keypoints import KeyPointsTracker
from dashcam.core.types import BBox, BodyPart, KeyPoint, Person, Point

logger = logging.getLogger(__name__)

DYNAMIC_MODEL_TARGET_INPUT_SIZE = 256
SHAPE_MULTIPLE = 32.0
DETECTION_THRESHOLD = 0.11
DETECTION_SCORE_INDEX = 55
BOUNDING_BOX_Y_MIN_INDEX = 51
BOUNDING_BOX_X_MIN_INDEX = 52
BOUNDING_BOX_Y_MAX_INDEX = 53
BOUNDING_BOX_X_MAX_INDEX = 54
KEYPOINT_COUNT = 17
OUTPUTS_COUNT_PER_KEYPOINT = 3
CPU_NUM_THREADS = 4

DEFAULT_MODEL_PATH = "models/movenet_multipose_fp16.tflite"


class ModelType(str, Enum):
    DYNAMIC = "dynamic"
    FIXED = "fixed"


class Device(str, Enum):
    CPU = "cpu"
    GPU = "gpu"
    NNAPI = "nnapi"


class TrackerType(str, Enum):
    OFF = "off"
    BOUNDING_BOX = "bounding_box"
    KEYPOINTS = "keypoints"


def crop_or_pad(image: np.ndarray, height: int, width: int) -> np.ndarray:
    """Center-crop or zero-pad `image` to exactly (height, width)."""

    h, w = image.shape[:2]

    if h > height:
        top = (h - height) // 2
        image = image[top : top + height]
    if w > width:
        left = (w - width) // 2
        image = image[:, left : left + width]

    h, w = image.shape[:2]
    pad_top = (height - h) // 2
    pad_left = (width - w) // 2
    if h != height or w != width:
        image = cv2.copyMakeBorder(
            image,
            pad_top,
            height - h - pad_top,
            pad_left,
            width - w - pad_left,
            cv2.BORDER_CONSTANT,
            value=(0, 0, 0),
        )
    return image


class MoveNetMultiPose:
    """Multi-person pose estimator.

    The instance keeps the geometry of the last prepared frame, so calls to
    `estimate_poses` are serialized on a single worker thread.
    """

    def __init__(self, interpreter: Any, model_type: ModelType = ModelType.DYNAMIC) -> None:
        self.interpreter = interpreter
        self.model_type = ModelType(model_type)
        self._input_details = interpreter.get_input_details()[0]
        self._output_details = interpreter.get_output_details()[0]
        self.input_shape = [int(v) for v in self._input_details["shape"]]
        self.output_shape = [int(v) for v in self._output_details["shape"]]

        self.image_width = 0
        self.image_height = 0
        self.target_width = 0
        self.target_height = 0
        self.scale_width = 0
        self.scale_height = 0
        self.last_inference_time_ns = -1
        self.tracker: AbstractTracker | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="movenet")

    @classmethod
    def create(
        cls,
        model_path: str = DEFAULT_MODEL_PATH,
        device: Device = Device.CPU,
        model_type: ModelType = ModelType.DYNAMIC,
    ) -> MoveNetMultiPose:
        """Build a LiteRT interpreter for `model_path` and wrap it."""

        litert = importlib.import_module("ai_edge_litert.interpreter")
        kwargs: dict[str, Any] = {"model_path": model_path}
        if Device(device) == Device.CPU:
            kwargs["num_threads"] = CPU_NUM_THREADS
        interpreter = litert.Interpreter(**kwargs)
        interpreter.allocate_tensors()
        return cls(interpreter, model_type)

    def set_tracker(self, tracker_type: TrackerType) -> None:
        tracker_type = TrackerType(tracker_type)
        if tracker_type == TrackerType.BOUNDING_BOX:
            self.tracker = BoundingBoxTracker()
        elif tracker_type == TrackerType.KEYPOINTS:
            self.tracker = KeyPointsTracker()
        else:
            self.tracker = None

    def process(self, frame: np.ndarray) -> Future[list[Person]]:
        """Run `estimate_poses` on the worker thread."""

        return self._executor.submit(self._timed_estimate, frame)

    def _timed_estimate(self, frame: np.ndarray) -> list[Person]:
        start = time.perf_counter()
        persons = self.estimate_poses(frame)
        logger.debug("MoveNet inference: %.1f ms", (time.perf_counter() - start) * 1000.0)
        return persons

    def prepare_input(self, frame: np.ndarray) -> np.ndarray:
        """Return a `[1, H, W, 3]` uint8 RGB tensor and record the remap geometry."""

        self.image_height, self.image_width = frame.shape[:2]
        dynamic = self.model_type == ModelType.DYNAMIC
        input_h = DYNAMIC_MODEL_TARGET_INPUT_SIZE if dynamic else self.input_shape[1]
        input_w = DYNAMIC_MODEL_TARGET_INPUT_SIZE if dynamic else self.input_shape[2]

        if self.image_width > self.image_height:
            scale = input_w / float(self.image_width)
            self.target_width = input_w
            self.scale_height = int(math.ceil(self.image_height * scale))
            resized = cv2.resize(
                frame, (self.target_width, self.scale_height), interpolation=cv2.INTER_LINEAR
            )
            self.target_height = int(math.ceil(self.scale_height / SHAPE_MULTIPLE) * SHAPE_MULTIPLE)
        else:
            scale = input_h / float(self.image_height)
            self.target_height = input_h
            self.scale_width = int(math.ceil(self.image_width * scale))
            resized = cv2.resize(
                frame, (self.scale_width, self.target_height), interpolation=cv2.INTER_LINEAR
            )
            self.target_width = int(math.ceil(self.scale_width / SHAPE_MULTIPLE) * SHAPE_MULTIPLE)

        if dynamic:
            padded = crop_or_pad(resized, self.target_height, self.target_width)
        else:
            padded = crop_or_pad(resized, input_h, input_w)

        rgb = cv2.cvtColor(padded, cv2.COLOR_BGR2RGB)
        return np.expand_dims(rgb.astype(np.uint8), axis=0)

    def resize_x(self, x: float) -> float:
        if self.image_width > self.image_height:
            ratio_width = self.image_width / float(self.target_width)
            return x * self.target_width * ratio_width
        detected_width = (
            self.target_width if self.model_type == ModelType.DYNAMIC else self.input_shape[2]
        )
        padding_width = detected_width - self.scale_width
        ratio_width = self.image_width / float(self.scale_width)
        return (x * detected_width - padding_width / 2.0) * ratio_width

    def resize_y(self, y: float) -> float:
        if self.image_width > self.image_height:
            detected_height = (
                self.target_height if self.model_type == ModelType.DYNAMIC else self.input_shape[1]
            )
            padding_height = detected_height - self.scale_height
            ratio_height = self.image_height / float(self.scale_height)
            return (y * detected_height - padding_height / 2.0) * ratio_height
        ratio_height = self.image_height / float(self.target_height)
        return y * self.target_height * ratio_height

    def resize_keypoint(self, x: float, y: float) -> Point:
        return (self.resize_x(x), self.resize_y(y))

    def resize_bbox(self, bbox: BBox | None) -> BBox | None:
        if bbox is None:
            return None
        x1, y1, x2, y2 = bbox
        return (self.resize_x(x1), self.resize_y(y1), self.resize_x(x2), self.resize_y(y2))

    def parse_output(self, output: np.ndarray) -> list[Person]:
        """Turn raw model rows into persons in normalized coordinates."""

        rows = np.asarray(output, dtype=np.float32).reshape(-1, self.output_shape[-1])
        persons: list[Person] = []
        for row in rows:
            person_score = float(row[DETECTION_SCORE_INDEX])
            if person_score < DETECTION_THRESHOLD:
                continue
            keypoints = []
            for i in range(KEYPOINT_COUNT):
                y = float(row[i * OUTPUTS_COUNT_PER_KEYPOINT])
                x = float(row[i * OUTPUTS_COUNT_PER_KEYPOINT + 1])
                score = float(row[i * OUTPUTS_COUNT_PER_KEYPOINT + 2])
                keypoints.append(KeyPoint(BodyPart(i), (x, y), score))
            bbox = (
                float(row[BOUNDING_BOX_X_MIN_INDEX]),
                float(row[BOUNDING_BOX_Y_MIN_INDEX]),
                float(row[BOUNDING_BOX_X_MAX_INDEX]),
                float(row[BOUNDING_BOX_Y_MAX_INDEX]),
            )
            persons.append(Person(keypoints=keypoints, bbox=bbox, score=person_score))
        return persons

    def post_process(self, output: np.ndarray, timestamp_us: int | None = None) -> list[Person]:
        """Run the tracker (if any) and remap persons into image pixels."""

        persons = self.parse_output(output)
        if not persons:
            return []

        if self.tracker is not None:
            if timestamp_us is None:
                timestamp_us = int(time.time() * 1_000_000)
            persons = self.tracker.apply(persons, timestamp_us)

        return [
            Person(
                keypoints=[
                    KeyPoint(kp.body_part, self.resize_keypoint(*kp.coordinate), kp.score)
                    for kp in person.keypoints
                ],
                bbox=self.resize_bbox(person.bbox),
                score=person.score,
                id=person.id,
            )
            for person in persons
        ]

    def estimate_poses(self, frame: np.ndarray) -> list[Person]:
        """Run the model on a BGR frame and return persons in frame pixels."""

        start_ns = time.perf_counter_ns()
        input_tensor = self.prepare_input(frame)

        input_index = self._input_details["index"]
        if self.model_type == ModelType.DYNAMIC:
            self.interpreter.resize_tensor_input(input_index, list(input_tensor.shape), strict=True)
            self.interpreter.allocate_tensors()
        self.interpreter.set_tensor(input_index, input_tensor)
        self.interpreter.invoke()
        output = self.interpreter.get_tensor(self._output_details["index"])

        persons = self.post_process(output)
        self.last_inference_time_ns = time.perf_counter_ns() - start_ns
        return persons

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.tracker = None
