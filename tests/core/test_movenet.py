import numpy as np
import pytest

from dashcam.core.detectors.movenet import (
    ModelType,
    MoveNetMultiPose,
    TrackerType,
    crop_or_pad,
)
from dashcam.core.trackers.bounding_box import BoundingBoxTracker
from dashcam.core.trackers.keypoints import KeyPointsTracker


class FakeInterpreter:
    def __init__(self, input_shape=(1, 256, 256, 3), output=None):
        self.input_shape = np.array(input_shape)
        self.output = output if output is not None else np.zeros((1, 6, 56), dtype=np.float32)
        self.resized = []
        self.allocations = 0
        self.tensor = None
        self.invocations = 0

    def get_input_details(self):
        return [{"index": 0, "shape": self.input_shape}]

    def get_output_details(self):
        return [{"index": 1, "shape": np.array(self.output.shape)}]

    def resize_tensor_input(self, index, shape, strict=False):
        self.resized.append((index, list(shape), strict))

    def allocate_tensors(self):
        self.allocations += 1

    def set_tensor(self, index, value):
        self.tensor = value

    def invoke(self):
        self.invocations += 1

    def get_tensor(self, index):
        assert index == 1
        return self.output


def _row(score=0.5, kp=(0.5, 0.5, 0.9), bbox=(0.25, 0.25, 0.75, 0.75)):
    """One output row: 17 x (y, x, score), then (ymin, xmin, ymax, xmax, score)."""

    row = np.zeros(56, dtype=np.float32)
    for i in range(17):
        row[i * 3 : i * 3 + 3] = kp
    ymin, xmin, ymax, xmax = bbox
    row[51:55] = (ymin, xmin, ymax, xmax)
    row[55] = score
    return row


def _output(*rows):
    out = np.zeros((1, 6, 56), dtype=np.float32)
    for i, row in enumerate(rows):
        out[0, i] = row
    return out


def test_crop_or_pad_pads_and_crops_to_target():
    img = np.full((100, 256, 3), 255, dtype=np.uint8)
    padded = crop_or_pad(img, 128, 256)
    assert padded.shape == (128, 256, 3)
    assert padded[0].max() == 0
    assert padded[14].min() == 255
    assert padded[127].max() == 0

    cropped = crop_or_pad(np.zeros((300, 300, 3), dtype=np.uint8), 256, 200)
    assert cropped.shape == (256, 200, 3)


def test_prepare_input_landscape_dynamic():
    net = MoveNetMultiPose(FakeInterpreter())
    tensor = net.prepare_input(np.zeros((256, 512, 3), dtype=np.uint8))
    assert tensor.shape == (1, 128, 256, 3)
    assert tensor.dtype == np.uint8
    assert net.scale_height == 128
    assert net.target_height == 128


def test_prepare_input_portrait_dynamic_rounds_to_multiple_of_32():
    net = MoveNetMultiPose(FakeInterpreter())
    tensor = net.prepare_input(np.zeros((512, 200, 3), dtype=np.uint8))
    assert net.scale_width == 100
    assert tensor.shape == (1, 256, 128, 3)


def test_prepare_input_converts_bgr_to_rgb():
    net = MoveNetMultiPose(FakeInterpreter())
    frame = np.zeros((256, 256, 3), dtype=np.uint8)
    frame[..., 0] = 255  # blue in BGR
    tensor = net.prepare_input(frame)
    assert tensor[0, 10, 10, 2] == 255
    assert tensor[0, 10, 10, 0] == 0


def test_prepare_input_fixed_model_uses_model_input_size():
    net = MoveNetMultiPose(FakeInterpreter(input_shape=(1, 192, 192, 3)), ModelType.FIXED)
    tensor = net.prepare_input(np.zeros((200, 512, 3), dtype=np.uint8))
    assert tensor.shape == (1, 192, 192, 3)


def test_resize_maps_center_back_to_image_center():
    net = MoveNetMultiPose(FakeInterpreter())
    net.prepare_input(np.zeros((200, 512, 3), dtype=np.uint8))
    # scale_height=100 padded to 128: 14 px of padding above the content.
    assert net.resize_x(0.5) == pytest.approx(256.0)
    assert net.resize_y(0.5) == pytest.approx(100.0)
    assert net.resize_y(14 / 128) == pytest.approx(0.0)

    net.prepare_input(np.zeros((512, 200, 3), dtype=np.uint8))
    assert net.resize_x(0.5) == pytest.approx(100.0)
    assert net.resize_y(0.5) == pytest.approx(256.0)


def test_resize_fixed_model_accounts_for_model_padding():
    net = MoveNetMultiPose(FakeInterpreter(), ModelType.FIXED)
    net.prepare_input(np.zeros((200, 512, 3), dtype=np.uint8))
    assert net.resize_y(0.5) == pytest.approx(100.0)
    assert net.resize_x(1.0) == pytest.approx(512.0)


def test_resize_fixed_model_portrait_uses_model_width():
    net = MoveNetMultiPose(FakeInterpreter(input_shape=(1, 192, 192, 3)), ModelType.FIXED)
    net.prepare_input(np.zeros((384, 150, 3), dtype=np.uint8))
    # scale_width=75 centred in the 192 px model input: 58.5 px of padding on the left.
    assert net.scale_width == 75
    assert net.resize_x(0.5) == pytest.approx(75.0)
    assert net.resize_x(58.5 / 192) == pytest.approx(0.0)
    assert net.resize_x(133.5 / 192) == pytest.approx(150.0)
    assert net.resize_y(0.5) == pytest.approx(192.0)


def test_parse_output_drops_low_scores():
    net = MoveNetMultiPose(FakeInterpreter())
    persons = net.parse_output(_output(_row(score=0.5), _row(score=0.05)))
    assert len(persons) == 1
    person = persons[0]
    assert person.id == -1
    assert len(person.keypoints) == 17
    assert person.keypoints[0].coordinate == pytest.approx((0.5, 0.5))
    assert person.bbox == pytest.approx((0.25, 0.25, 0.75, 0.75))


def test_estimate_poses_remaps_keypoints_and_bbox_without_tracker():
    interpreter = FakeInterpreter(output=_output(_row()))
    net = MoveNetMultiPose(interpreter)
    persons = net.estimate_poses(np.zeros((200, 512, 3), dtype=np.uint8))

    assert interpreter.resized == [(0, [1, 128, 256, 3], True)]
    assert interpreter.invocations == 1
    assert interpreter.tensor.shape == (1, 128, 256, 3)
    assert net.last_inference_time_ns >= 0

    assert len(persons) == 1
    assert persons[0].id == -1
    assert persons[0].keypoints[5].coordinate == pytest.approx((256.0, 100.0))
    x1, y1, x2, y2 = persons[0].bbox
    assert x1 == pytest.approx(128.0)
    assert x2 == pytest.approx(384.0)


def test_fixed_model_does_not_resize_interpreter_input():
    interpreter = FakeInterpreter(output=_output(_row()))
    net = MoveNetMultiPose(interpreter, ModelType.FIXED)
    net.estimate_poses(np.zeros((256, 256, 3), dtype=np.uint8))
    assert interpreter.resized == []


def test_post_process_with_tracker_keeps_ids_between_frames():
    net = MoveNetMultiPose(FakeInterpreter())
    net.prepare_input(np.zeros((256, 512, 3), dtype=np.uint8))
    net.set_tracker(TrackerType.BOUNDING_BOX)

    output = _output(_row(bbox=(0.1, 0.1, 0.4, 0.4)), _row(bbox=(0.5, 0.5, 0.9, 0.9)))
    first = net.post_process(output, timestamp_us=0)
    second = net.post_process(output, timestamp_us=33_000)
    assert [p.id for p in first] == [1, 2]
    assert [p.id for p in second] == [1, 2]


def test_post_process_empty_output_returns_empty_list():
    net = MoveNetMultiPose(FakeInterpreter())
    net.prepare_input(np.zeros((256, 256, 3), dtype=np.uint8))
    assert net.post_process(_output()) == []


def test_set_tracker_selects_implementation():
    net = MoveNetMultiPose(FakeInterpreter())
    net.set_tracker(TrackerType.KEYPOINTS)
    assert isinstance(net.tracker, KeyPointsTracker)
    net.set_tracker("bounding_box")
    assert isinstance(net.tracker, BoundingBoxTracker)
    net.set_tracker(TrackerType.OFF)
    assert net.tracker is None


def test_process_returns_future():
    net = MoveNetMultiPose(FakeInterpreter(output=_output(_row())))
    try:
        persons = net.process(np.zeros((256, 256, 3), dtype=np.uint8)).result(timeout=5)
    finally:
        net.close()
    assert len(persons) == 1
