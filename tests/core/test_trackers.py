import pytest

from dashcam.core.trackers.base import TrackerConfig
from dashcam.core.trackers.bounding_box import BoundingBoxTracker, box_iou
from dashcam.core.trackers.keypoints import KeyPointsTracker
from dashcam.core.types import BodyPart, KeyPoint, Person


def _person(bbox=None, keypoints=None, score=0.9):
    return Person(keypoints=keypoints or [], bbox=bbox, score=score)


def _keypoints(offset=(0.0, 0.0), score=0.9):
    coords = [(0.1 + 0.05 * (i % 4), 0.1 + 0.04 * i) for i in range(17)]
    return [
        KeyPoint(BodyPart(i), (x + offset[0], y + offset[1]), score) for i, (x, y) in enumerate(coords)
    ]


def test_box_iou():
    assert box_iou((0, 0, 2, 2), (0, 0, 2, 2)) == pytest.approx(1.0)
    assert box_iou((0, 0, 2, 2), (1, 0, 3, 2)) == pytest.approx(2 / 6)
    assert box_iou((0, 0, 1, 1), (2, 2, 3, 3)) == 0.0
    assert box_iou((0, 0, 1, 1), (1, 0, 2, 1)) == 0.0


def test_bounding_box_tracker_assigns_new_ids_from_one():
    tracker = BoundingBoxTracker()
    persons = tracker.apply(
        [_person((0.0, 0.0, 0.2, 0.2)), _person((0.5, 0.5, 0.8, 0.8))], timestamp=0
    )
    assert [p.id for p in persons] == [1, 2]
    assert len(tracker.tracks) == 2


def test_bounding_box_tracker_keeps_ids_for_moving_persons():
    tracker = BoundingBoxTracker()
    tracker.apply([_person((0.0, 0.0, 0.2, 0.2)), _person((0.5, 0.5, 0.8, 0.8))], timestamp=0)
    # Detection order swapped, boxes shifted a little.
    persons = tracker.apply(
        [_person((0.52, 0.5, 0.82, 0.8)), _person((0.01, 0.0, 0.21, 0.2))], timestamp=10_000
    )
    assert [p.id for p in persons] == [2, 1]


def test_earlier_detection_claims_track_before_better_match():
    tracker = BoundingBoxTracker()
    tracker.apply([_person((0.0, 0.0, 0.4, 0.4))], timestamp=0)
    weaker = _person((0.2, 0.0, 0.6, 0.4))
    stronger = _person((0.02, 0.0, 0.42, 0.4))
    sims = tracker.compute_similarity([weaker, stronger])
    assert sims[0][0] == pytest.approx(1 / 3)
    assert sims[1][0] > sims[0][0]

    persons = tracker.apply([weaker, stronger], timestamp=1)
    assert [p.id for p in persons] == [1, 2]


def test_later_detection_falls_back_to_next_best_track():
    tracker = BoundingBoxTracker()
    tracker.apply([_person((0.0, 0.0, 0.4, 0.4)), _person((0.3, 0.0, 0.7, 0.4))], timestamp=0)
    # Both overlap track 1; the second one also overlaps track 2 less strongly.
    persons = tracker.apply(
        [_person((0.0, 0.0, 0.4, 0.4)), _person((0.05, 0.0, 0.45, 0.4))], timestamp=1
    )
    assert [p.id for p in persons] == [1, 2]


def test_bounding_box_tracker_creates_track_below_min_similarity():
    tracker = BoundingBoxTracker()
    tracker.apply([_person((0.0, 0.0, 0.2, 0.2))], timestamp=0)
    persons = tracker.apply([_person((0.18, 0.18, 0.4, 0.4))], timestamp=1)
    assert persons[0].id == 2


def test_missing_bbox_has_zero_similarity():
    tracker = BoundingBoxTracker()
    tracker.apply([_person((0.0, 0.0, 0.2, 0.2))], timestamp=0)
    assert tracker.compute_similarity([_person(None)]) == [[0.0]]


def test_old_tracks_are_dropped():
    tracker = BoundingBoxTracker(TrackerConfig(max_age_us=100))
    tracker.apply([_person((0.0, 0.0, 0.2, 0.2))], timestamp=0)
    persons = tracker.apply([_person((0.0, 0.0, 0.2, 0.2))], timestamp=101)
    assert persons[0].id == 2
    assert len(tracker.tracks) == 1


def test_empty_frame_keeps_tracks_until_they_expire():
    tracker = BoundingBoxTracker()
    tracker.apply([_person((0.0, 0.0, 0.2, 0.2))], timestamp=0)
    assert tracker.apply([], timestamp=500_000) == []
    assert len(tracker.tracks) == 1
    tracker.apply([], timestamp=2_000_000)
    assert tracker.tracks == []


def test_track_count_is_capped_to_most_recent():
    tracker = BoundingBoxTracker(TrackerConfig(max_tracks=2))
    tracker.apply([_person((0.0, 0.0, 0.1, 0.1))], timestamp=0)
    tracker.apply([_person((0.3, 0.3, 0.4, 0.4))], timestamp=1)
    tracker.apply([_person((0.6, 0.6, 0.7, 0.7))], timestamp=2)
    assert [t.person.id for t in tracker.tracks] == [3, 2]


def test_apply_does_not_mutate_input_persons():
    tracker = BoundingBoxTracker()
    person = _person((0.0, 0.0, 0.2, 0.2))
    tracker.apply([person], timestamp=0)
    assert person.id == -1


def test_similarity_shape_mismatch_raises():
    class BrokenTracker(BoundingBoxTracker):
        def compute_similarity(self, persons):
            return []

    tracker = BrokenTracker()
    with pytest.raises(ValueError):
        tracker.apply([_person((0.0, 0.0, 0.2, 0.2))], timestamp=0)


def test_reset_restarts_ids():
    tracker = BoundingBoxTracker()
    tracker.apply([_person((0.0, 0.0, 0.2, 0.2))], timestamp=0)
    tracker.reset()
    assert tracker.tracks == []
    assert tracker.apply([_person((0.5, 0.5, 0.8, 0.8))], timestamp=1)[0].id == 1


def test_oks_identical_keypoints_is_one():
    tracker = KeyPointsTracker()
    person = _person(keypoints=_keypoints())
    assert tracker.oks(person, person) == pytest.approx(1.0)


def test_oks_decreases_with_distance():
    tracker = KeyPointsTracker()
    base = _person(keypoints=_keypoints())
    near = _person(keypoints=_keypoints(offset=(0.01, 0.0)))
    far = _person(keypoints=_keypoints(offset=(0.2, 0.0)))
    assert tracker.oks(base, base) > tracker.oks(near, base) > tracker.oks(far, base)


def test_oks_requires_min_valid_keypoints():
    tracker = KeyPointsTracker()
    weak = _keypoints(score=0.1)
    for kp in weak[:3]:
        kp.score = 0.9
    person = _person(keypoints=weak)
    assert tracker.oks(person, _person(keypoints=_keypoints())) == 0.0


def test_keypoints_tracker_keeps_ids():
    tracker = KeyPointsTracker()
    tracker.apply([_person(keypoints=_keypoints())], timestamp=0)
    persons = tracker.apply([_person(keypoints=_keypoints(offset=(0.005, 0.0)))], timestamp=1)
    assert persons[0].id == 1
