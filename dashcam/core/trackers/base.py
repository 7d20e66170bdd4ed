"""Track association for MoveNet multi-person output.

Trackers work in the model's normalized coordinate space: the detector runs the
tracker before remapping keypoints back to image pixels.
"""

from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace

from dashcam.core.types import Person

MAX_TRACKS = 18
# Timestamps are microseconds.
MAX_AGE_US = 1000 * 1000
MIN_SIMILARITY = 0.15

# COCO per-keypoint falloff constants used by OKS.
DEFAULT_KEYPOINT_FALLOFF = (
    0.026,
    0.025,
    0.025,
    0.035,
    0.035,
    0.079,
    0.079,
    0.072,
    0.072,
    0.062,
    0.062,
    0.107,
    0.107,
    0.087,
    0.087,
    0.089,
    0.089,
)


@dataclass
class KeyPointTrackerParams:
    keypoint_threshold: float = 0.3
    keypoint_falloff: tuple[float, ...] = DEFAULT_KEYPOINT_FALLOFF
    min_num_keypoints: int = 4


@dataclass
class TrackerConfig:
    max_tracks: int = MAX_TRACKS
    max_age_us: int = MAX_AGE_US
    min_similarity: float = MIN_SIMILARITY
    keypoint_params: KeyPointTrackerParams | None = field(default_factory=KeyPointTrackerParams)


@dataclass
class PersonTrack:
    person: Person
    last_timestamp: int


class AbstractTracker(ABC):
    """Greedy similarity-based track association.

    Subclasses only provide the persons x tracks similarity matrix.
    """

    def __init__(self, config: TrackerConfig | None = None) -> None:
        self.config = config or TrackerConfig()
        self.tracks: list[PersonTrack] = []
        self._id_iter = itertools.count(1)

    def apply(self, persons: list[Person], timestamp: int) -> list[Person]:
        """Assign track ids to `persons` observed at `timestamp` (microseconds)."""

        self.tracks = self._filter_old_tracks(timestamp)
        persons = list(persons)
        if persons:
            sim_matrix = self.compute_similarity(persons)
            persons = self._assign_tracks(persons, sim_matrix, timestamp)
        self.tracks = self._update_tracks()
        return persons

    @abstractmethod
    def compute_similarity(self, persons: list[Person]) -> list[list[float]]:
        """Return a len(persons) x len(tracks) similarity matrix."""

        raise NotImplementedError

    def reset(self) -> None:
        self.tracks = []
        self._id_iter = itertools.count(1)

    def _filter_old_tracks(self, timestamp: int) -> list[PersonTrack]:
        return [t for t in self.tracks if timestamp - t.last_timestamp <= self.config.max_age_us]

    def _assign_tracks(
        self,
        persons: list[Person],
        sim_matrix: list[list[float]],
        timestamp: int,
    ) -> list[Person]:
        if len(sim_matrix) != len(persons) or any(len(row) != len(self.tracks) for row in sim_matrix):
            raise ValueError("Size of person array and track array doesn't match.")

        unmatched_tracks = list(range(len(self.tracks)))
        unmatched_dets: list[int] = []

        for di, person in enumerate(persons):
            if not unmatched_tracks:
                unmatched_dets.append(di)
                continue

            best_ti = -1
            best_sim = -1.0
            for ti in unmatched_tracks:
                sim = sim_matrix[di][ti]
                if sim >= self.config.min_similarity and sim > best_sim:
                    best_ti = ti
                    best_sim = sim

            if best_ti < 0:
                unmatched_dets.append(di)
                continue

            track_id = self.tracks[best_ti].person.id
            persons[di] = replace(person, id=track_id)
            self.tracks[best_ti] = PersonTrack(person=persons[di], last_timestamp=timestamp)
            unmatched_tracks.remove(best_ti)

        for di in unmatched_dets:
            persons[di] = replace(persons[di], id=next(self._id_iter))
            self.tracks.append(PersonTrack(person=persons[di], last_timestamp=timestamp))

        return persons

    def _update_tracks(self) -> list[PersonTrack]:
        ordered = sorted(self.tracks, key=lambda t: t.last_timestamp, reverse=True)
        return ordered[: self.config.max_tracks]
