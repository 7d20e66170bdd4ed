import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

import numpy as np
import pytest

from dashcam.core.pipeline import DashcamProcessor
from dashcam.core.types import DetectedObject, FaceMesh, Person, Pose, PoseLandmark


class FakeDetector:
    def __init__(self, value=None, error: Exception | None = None):
        self.value = value
        self.error = error
        self.calls = 0
        self.closed = False

    def process(self, frame):
        self.calls += 1
        fut: Future = Future()
        if self.error is not None:
            fut.set_exception(self.error)
        else:
            fut.set_result(self.value)
        return fut

    def close(self):
        self.closed = True


class BarrierDetector:
    """Completes only once every detector sharing the barrier has started."""

    def __init__(self, barrier: threading.Barrier, value):
        self.barrier = barrier
        self.value = value
        self._executor = ThreadPoolExecutor(max_workers=1)

    def process(self, frame):
        def run():
            self.barrier.wait(timeout=5)
            return self.value

        return self._executor.submit(run)

    def close(self):
        self._executor.shutdown(wait=True)


class FakeClassifierProcessor:
    def __init__(self):
        self.poses = []

    def get_pose_result(self, pose):
        self.poses.append(pose)
        return ["squats_down : 1 reps"]


POSE = Pose(landmarks=[PoseLandmark(index=0, x=1.0, y=2.0, z=0.0, in_frame_likelihood=0.9)])
OBJECTS = [DetectedObject(bbox=(0.0, 0.0, 5.0, 5.0))]
FACES = [FaceMesh(bbox=(1.0, 1.0, 4.0, 4.0))]
PERSONS = [Person(keypoints=[], bbox=(0.0, 0.0, 1.0, 1.0), score=0.5, id=1)]
FRAME = np.zeros((48, 64, 3), dtype=np.uint8)


def test_detect_gathers_every_pipeline():
    classifier = FakeClassifierProcessor()
    processor = DashcamProcessor(
        pose_detector=FakeDetector(POSE),
        object_detector=FakeDetector(OBJECTS),
        face_mesh_detector=FakeDetector(FACES),
        movenet_detector=FakeDetector(PERSONS),
        classifier_processor=classifier,
    )
    detection = processor.detect(FRAME)
    processor.stop()

    assert detection.pose is POSE
    assert detection.objects is OBJECTS
    assert detection.face_meshes is FACES
    assert detection.persons is PERSONS
    assert detection.classification == ["squats_down : 1 reps"]
    assert classifier.poses == [POSE]


def test_detectors_run_concurrently():
    barrier = threading.Barrier(2)
    pose_detector = BarrierDetector(barrier, POSE)
    movenet_detector = BarrierDetector(barrier, PERSONS)
    processor = DashcamProcessor(pose_detector=pose_detector, movenet_detector=movenet_detector)
    try:
        detection = processor.detect(FRAME)
    finally:
        processor.stop()
    assert detection.pose is POSE
    assert detection.persons is PERSONS


def test_failed_detector_does_not_drop_other_results(caplog):
    processor = DashcamProcessor(
        pose_detector=FakeDetector(error=RuntimeError("boom")),
        object_detector=FakeDetector(OBJECTS),
        classifier_processor=FakeClassifierProcessor(),
    )
    with caplog.at_level(logging.ERROR):
        detection = processor.detect(FRAME)
    processor.stop()

    assert detection.pose is None
    assert detection.objects is OBJECTS
    assert detection.classification == ["squats_down : 1 reps"]
    assert "pose detection failed" in caplog.text


def test_disabled_pipelines_are_none():
    processor = DashcamProcessor(object_detector=FakeDetector(OBJECTS))
    detection = processor.detect(FRAME)
    processor.stop()
    assert detection.pose is None
    assert detection.classification is None
    assert detection.face_meshes is None
    assert detection.persons is None


def test_inference_stride_reuses_last_detection():
    detector = FakeDetector(OBJECTS)
    processor = DashcamProcessor(object_detector=detector)

    s1, _ = processor.process(FRAME, inference_stride=2)
    s2, _ = processor.process(FRAME, inference_stride=2)
    s3, _ = processor.process(FRAME, inference_stride=2)
    processor.stop()

    # frame ids start at 1: the detector only runs on frame 2.
    assert detector.calls == 1
    assert s1.detection.objects is None
    assert s2.detection.objects is OBJECTS
    assert s3.detection.objects is OBJECTS
    assert [s1.frame_id, s2.frame_id, s3.frame_id] == [1, 2, 3]
    assert s1.frame_size == (64, 48)


def test_process_returns_input_frame_and_latency():
    processor = DashcamProcessor(object_detector=FakeDetector(OBJECTS))
    assert processor.latency_stats()["runs"] == 0
    summary, out = processor.process(FRAME)
    processor.stop()

    assert out is FRAME
    assert summary.latency["runs"] == 1
    assert summary.latency["min_ms"] <= summary.latency["max_ms"]
    assert summary.latency["last_ms"] >= 0


def test_process_with_profile_reports_steps():
    processor = DashcamProcessor(
        pose_detector=FakeDetector(POSE),
        object_detector=FakeDetector(OBJECTS),
        classifier_processor=FakeClassifierProcessor(),
    )
    summary, _, timings = processor.process_with_profile(FRAME)
    _, _, skipped = processor.process_with_profile(FRAME, inference_stride=2)
    processor.stop()

    assert summary.detection.objects is OBJECTS
    for key in ("do_infer", "detect_ms", "pose_ms", "objects_ms", "classification_ms", "pipeline_ms"):
        assert key in timings
    assert timings["do_infer"] == 1.0
    assert skipped["do_infer"] == 0.0
    assert skipped["detect_ms"] == 0.0


def test_stop_closes_detectors_and_logs_errors(caplog):
    class BrokenClose(FakeDetector):
        def close(self):
            raise RuntimeError("close failed")

    ok = FakeDetector(OBJECTS)
    processor = DashcamProcessor(pose_detector=BrokenClose(POSE), object_detector=ok)
    with caplog.at_level(logging.ERROR):
        processor.stop()
    assert ok.closed
    assert "close pose detector" in caplog.text


@pytest.mark.parametrize("stride", [1, 3])
def test_fps_is_positive_after_two_frames(stride):
    processor = DashcamProcessor(object_detector=FakeDetector(OBJECTS))
    processor.process(FRAME, inference_stride=stride)
    summary, _ = processor.process(FRAME, inference_stride=stride)
    processor.stop()
    assert summary.fps > 0
