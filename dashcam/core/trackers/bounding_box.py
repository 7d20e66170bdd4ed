from __future__ import annotations

from dashcam.core.trackers.base import AbstractTracker
from dashcam.core.types import BBox, Person


def box_iou(boxA: BBox, boxB: BBox) -> float:
    """IoU of two (x1, y1, x2, y2) boxes; disjoint or degenerate boxes give 0."""

    x_min = max(boxA[0], boxB[0])
    y_min = max(boxA[1], boxB[1])
    x_max = min(boxA[2], boxB[2])
    y_max = min(boxA[3], boxB[3])
    if x_min >= x_max or y_min >= y_max:
        return 0.0
    intersection = (x_max - x_min) * (y_max - y_min)
    areaA = (boxA[2] - boxA[0]) * (boxA[3] - boxA[1])
    areaB = (boxB[2] - boxB[0]) * (boxB[3] - boxB[1])
    union = areaA + areaB - intersection
    if union <= 0:
        return 0.0
    return intersection / union


class BoundingBoxTracker(AbstractTracker):
    """Associates persons with tracks by bounding-box IoU."""

    def compute_similarity(self, persons: list[Person]) -> list[list[float]]:
        return [[self._iou(person, track.person) for track in self.tracks] for person in persons]

    @staticmethod
    def _iou(person: Person, track_person: Person) -> float:
        if person.bbox is None or track_person.bbox is None:
            return 0.0
        return box_iou(person.bbox, track_person.bbox)
