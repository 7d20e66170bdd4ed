import asyncio
import time
from concurrent.futures import Future

import numpy as np
import pytest

import dashcam.api.services.engine as engine_mod
from dashcam.api.services.engine import VideoEngine, build_processor
from dashcam.core.config.settings import DashcamSettings
from dashcam.core.pipeline import DashcamProcessor
from dashcam.core.types import DetectedObject


class FakeDetector:
    def __init__(self, value):
        self.value = value
        self.closed = False

    def process(self, frame):
        fut: Future = Future()
        fut.set_result(self.value)
        return fut

    def close(self):
        self.closed = True


OBJECTS = [DetectedObject(bbox=(2.0, 2.0, 30.0, 30.0), tracking_id=1)]


@pytest.fixture
def fake_processor(monkeypatch):
    detector = FakeDetector(OBJECTS)
    processor = DashcamProcessor(object_detector=detector)
    monkeypatch.setattr(engine_mod, "build_processor", lambda settings: processor)
    return processor, detector


def test_engine_reports_source_error(fake_processor):
    settings = DashcamSettings(video_source="file", video_path="/nonexistent/video.mp4")
    engine = VideoEngine(settings)
    engine.start()
    time.sleep(0.1)
    assert engine.last_error is not None
    assert engine.running is False
    engine.stop()


def test_process_and_encode_frame(fake_processor):
    _, detector = fake_processor
    engine = VideoEngine(DashcamSettings(video_source="file", profile_steps=True, output_width=32))
    frame = np.zeros((48, 64, 3), dtype=np.uint8)

    engine._process_frame(frame)
    summary = engine.latest_summary()
    assert summary is not None
    assert summary.detection.objects == OBJECTS
    assert summary.profile is not None and "detect_ms" in summary.profile

    annotated, queued = engine._encode_queue.get_nowait()
    assert queued is summary
    assert annotated is not frame  # overlays drawn on a copy
    engine._encode_frame(annotated, queued)

    jpg = engine.latest_frame()
    assert jpg is not None and jpg[:2] == b"\xff\xd8"
    assert engine.latest_stream_summary() is summary

    engine.stop()
    assert detector.closed


def test_encode_queue_keeps_only_newest(fake_processor):
    engine = VideoEngine(DashcamSettings(video_source="file", enable_backend_overlays=False))
    frame = np.zeros((16, 16, 3), dtype=np.uint8)
    engine._process_frame(frame)
    engine._process_frame(frame)
    assert engine._encode_queue.qsize() == 1
    _, summary = engine._encode_queue.get_nowait()
    assert summary.frame_id == 2
    engine.stop()


def test_metadata_stream_yields_new_summaries(fake_processor):
    engine = VideoEngine(DashcamSettings(video_source="file"))
    engine._process_frame(np.zeros((16, 16, 3), dtype=np.uint8))

    async def first():
        agen = engine.metadata_stream()
        try:
            return await agen.__anext__()
        finally:
            await agen.aclose()

    summary = asyncio.run(first())
    assert summary.frame_id == 1
    engine.stop()


def test_target_fps_defaults_depend_on_source(fake_processor):
    assert VideoEngine(DashcamSettings(video_source="file"))._target_fps == 0.0
    assert VideoEngine(DashcamSettings(video_source="webcam"))._target_fps == 15.0
    assert VideoEngine(DashcamSettings(video_source="rtsp"))._target_fps == 30.0
    assert VideoEngine(DashcamSettings(video_source="rtsp", target_fps=5))._target_fps == 5.0


def test_build_processor_creates_enabled_detectors(monkeypatch):
    created = {}

    class Recorder:
        def __init__(self, name):
            self.name = name

        def __call__(self, *args, **kwargs):
            created[self.name] = (args, kwargs)
            return FakeDetector(None)

    class FakeMoveNet(FakeDetector):
        tracker_type = None

        @classmethod
        def create(cls, model_path, device, model_type):
            created["movenet"] = (model_path, device, model_type)
            return cls(None)

        def set_tracker(self, tracker_type):
            FakeMoveNet.tracker_type = tracker_type

    monkeypatch.setattr(engine_mod, "PoseDetector", Recorder("pose"))
    monkeypatch.setattr(engine_mod, "ObjectDetector", Recorder("objects"))
    monkeypatch.setattr(engine_mod, "FaceMeshDetector", Recorder("face_mesh"))
    monkeypatch.setattr(engine_mod, "PoseClassifierProcessor", Recorder("classifier"))
    monkeypatch.setattr(engine_mod, "MoveNetMultiPose", FakeMoveNet)

    settings = DashcamSettings(
        enable_pose_classification=True, movenet_tracker="keypoints", stream_mode=False
    )
    processor = build_processor(settings)

    assert set(created) == {"pose", "objects", "face_mesh", "classifier", "movenet"}
    assert created["objects"][1]["stream_mode"] is False
    assert created["movenet"] == (settings.movenet_model_path, "cpu", "dynamic")
    assert FakeMoveNet.tracker_type == "keypoints"
    assert all(d is not None for d in processor.detectors.values())
    assert processor.classifier_processor is not None
    processor.stop()


def test_build_processor_skips_disabled_pipelines():
    settings = DashcamSettings(
        enable_pose=False,
        enable_objects=False,
        enable_face_mesh=False,
        enable_movenet=False,
        enable_pose_classification=True,
    )
    processor = build_processor(settings)
    assert all(d is None for d in processor.detectors.values())
    # Classification needs the pose pipeline.
    assert processor.classifier_processor is None
    processor.stop()


def test_model_load_failure_is_reported_not_raised(monkeypatch):
    def _broken(settings):
        raise FileNotFoundError("pose_landmarker.task")

    monkeypatch.setattr(engine_mod, "build_processor", _broken)
    engine = VideoEngine(DashcamSettings(video_source="file"))
    assert engine.processor is None
    assert engine.last_error == "Failed to load models"

    engine.start()
    assert engine.running is False
    assert engine.last_error == "Failed to load models"
    engine.stop()
