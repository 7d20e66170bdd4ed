from __future__ import annotations

import math

from dashcam.core.trackers.base import AbstractTracker
from dashcam.core.types import KeyPoint, Person


class KeyPointsTracker(AbstractTracker):
    """Associates persons with tracks by object keypoint similarity (OKS)."""

    def compute_similarity(self, persons: list[Person]) -> list[list[float]]:
        return [[self.oks(person, track.person) for track in self.tracks] for person in persons]

    def oks(self, person: Person, track_person: Person) -> float:
        """OKS between a detection and a track, scaled by the track's keypoint area."""

        params = self.config.keypoint_params
        if params is None:
            return 0.0

        box_area = self._area(track_person.keypoints) + 1e-6
        oks_total = 0.0
        num_valid = 0
        for index, (pose_kpt, track_kpt) in enumerate(zip(person.keypoints, track_person.keypoints)):
            if pose_kpt.score < params.keypoint_threshold or track_kpt.score < params.keypoint_threshold:
                continue
            num_valid += 1
            dx = pose_kpt.coordinate[0] - track_kpt.coordinate[0]
            dy = pose_kpt.coordinate[1] - track_kpt.coordinate[1]
            d_squared = dx * dx + dy * dy
            x = 2.0 * params.keypoint_falloff[index]
            oks_total += math.exp(-1.0 * d_squared / (2.0 * box_area * x * x))

        if num_valid < params.min_num_keypoints:
            return 0.0
        return oks_total / num_valid

    def _area(self, keypoints: list[KeyPoint]) -> float:
        """Area of the box spanned by keypoints above the threshold."""

        params = self.config.keypoint_params
        threshold = params.keypoint_threshold if params is not None else 0.0
        valid = [kp for kp in keypoints if kp.score > threshold]
        if not valid:
            return 0.0
        xs = [kp.coordinate[0] for kp in valid]
        ys = [kp.coordinate[1] for kp in valid]
        return (max(xs) - min(xs)) * (max(ys) - min(ys))
