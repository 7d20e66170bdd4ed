from __future__ import annotations

import itertools
from dataclasses import dataclass, replace

import numpy as np

from dashcam.core.types import BBox, DetectedObject

IOU_SUPPRESS_VALUE = -1.0


def iou_matrix(boxes_a: np.ndarray, boxes_b: np.ndarray) -> np.ndarray:
    """Pairwise IoU between two (N, 4) and (M, 4) xyxy box arrays."""

    xA = np.maximum(boxes_a[:, None, 0], boxes_b[None, :, 0])
    yA = np.maximum(boxes_a[:, None, 1], boxes_b[None, :, 1])
    xB = np.minimum(boxes_a[:, None, 2], boxes_b[None, :, 2])
    yB = np.minimum(boxes_a[:, None, 3], boxes_b[None, :, 3])
    inter = np.maximum(0.0, xB - xA) * np.maximum(0.0, yB - yA)
    area_a = np.maximum(0.0, boxes_a[:, 2] - boxes_a[:, 0]) * np.maximum(
        0.0, boxes_a[:, 3] - boxes_a[:, 1]
    )
    area_b = np.maximum(0.0, boxes_b[:, 2] - boxes_b[:, 0]) * np.maximum(
        0.0, boxes_b[:, 3] - boxes_b[:, 1]
    )
    union = area_a[:, None] + area_b[None, :] - inter
    return np.where(union > 0.0, inter / np.where(union > 0.0, union, 1.0), 0.0)


@dataclass
class Track:
    """Internal tracker state for one object."""

    id: int
    bbox: BBox
    missed: int = 0


class SimpleTracker:
    """A lightweight IoU-based multi-object tracker.

    Assigns detections to existing tracks greedily by IoU and keeps stable
    tracking ids for a short period of missed detections. Used to give object
    detections a `tracking_id` in stream mode.
    """

    def __init__(self, iou_threshold: float = 0.3, max_missed: int = 30) -> None:
        self.iou_threshold = iou_threshold
        self.max_missed = max_missed
        self.tracks: dict[int, Track] = {}
        self._id_iter = itertools.count(1)

    def update(self, objects: list[DetectedObject]) -> list[DetectedObject]:
        """Return `objects` with `tracking_id` set, updating internal tracks."""

        objects_list = objects if isinstance(objects, list) else list(objects)
        out: list[DetectedObject | None] = [None] * len(objects_list)

        track_ids = list(self.tracks.keys())
        assigned_tracks = np.zeros(len(track_ids), dtype=bool)

        if track_ids and objects_list:
            track_boxes = np.array([self.tracks[tid].bbox for tid in track_ids], dtype=np.float64)
            det_boxes = np.array([obj.bbox for obj in objects_list], dtype=np.float64)
            ious = iou_matrix(track_boxes, det_boxes)

            while ious.size:
                ti, di = divmod(int(ious.argmax()), ious.shape[1])
                if ious[ti, di] < self.iou_threshold:
                    break
                track = self.tracks[track_ids[ti]]
                obj = objects_list[di]
                track.bbox = obj.bbox
                track.missed = 0
                out[di] = replace(obj, tracking_id=track.id)
                assigned_tracks[ti] = True
                ious[ti, :] = IOU_SUPPRESS_VALUE
                ious[:, di] = IOU_SUPPRESS_VALUE

        for di, obj in enumerate(objects_list):
            if out[di] is not None:
                continue
            new_id = next(self._id_iter)
            self.tracks[new_id] = Track(id=new_id, bbox=obj.bbox)
            out[di] = replace(obj, tracking_id=new_id)

        to_delete = []
        for ti, tid in enumerate(track_ids):
            if assigned_tracks[ti]:
                continue
            track = self.tracks[tid]
            track.missed += 1
            if track.missed > self.max_missed:
                to_delete.append(tid)
        for tid in to_delete:
            del self.tracks[tid]

        return [obj for obj in out if obj is not None]
