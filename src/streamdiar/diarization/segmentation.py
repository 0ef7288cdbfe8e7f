"""Frame-level decoding of segmentation model output.

The segmentation model scores every frame against seven powerset classes,
each standing for one subset of the three local speaker slots a chunk can
resolve: silence, the three singletons and the three pairs.  There is no
class for all three slots at once.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .config import NUM_LOCAL_SLOTS, NUM_POWERSET_CLASSES

POWERSET_CLASSES: tuple[tuple[int, ...], ...] = (
    (),
    (0,),
    (1,),
    (2,),
    (0, 1),
    (0, 2),
    (1, 2),
)

_POWERSET_MATRIX = np.zeros((NUM_POWERSET_CLASSES, NUM_LOCAL_SLOTS), dtype=np.float32)
for _cls, _slots in enumerate(POWERSET_CLASSES):
    _POWERSET_MATRIX[_cls, list(_slots)] = 1.0
_POWERSET_MATRIX.setflags(write=False)


@dataclass(frozen=True)
class SlidingWindow:
    """Maps frame indices of one chunk to absolute time."""

    start: float
    duration: float
    step: float

    def __post_init__(self) -> None:
        if not self.step > 0:
            raise ValueError("SlidingWindow step must be > 0")
        if self.duration < self.step:
            raise ValueError("SlidingWindow duration must be >= step")

    def time(self, index: int) -> float:
        return self.start + index * self.step

    def frame_span(self, index: int) -> tuple[float, float]:
        begin = self.time(index)
        return begin, begin + self.duration


def _as_score_matrix(scores: np.ndarray) -> np.ndarray:
    arr = np.asarray(scores, dtype=np.float32)
    while arr.ndim > 2 and arr.shape[0] == 1:
        arr = arr[0]
    if arr.ndim != 2 or arr.shape[1] != NUM_POWERSET_CLASSES:
        raise ValueError(
            f"segmentation scores must have shape [frames, {NUM_POWERSET_CLASSES}], "
            f"got {np.shape(scores)}"
        )
    if arr.shape[0] == 0:
        raise ValueError("segmentation scores contain no frames")
    return arr


def decode_powerset(scores: np.ndarray) -> np.ndarray:
    """Convert ``[frames, 7]`` class scores into ``[frames, 3]`` binary activity.

    The winning class per frame is the first index holding the maximum score.
    A leading batch axis of size one is accepted and dropped.
    """
    arr = _as_score_matrix(scores)
    winners = np.argmax(arr, axis=1)
    return _POWERSET_MATRIX[winners].copy()


def clean_frame_mask(activity: np.ndarray) -> np.ndarray:
    """1.0 for frames with fewer than two active slots, else 0.0."""
    return (np.asarray(activity).sum(axis=1) < 2).astype(np.float32)


def slot_activities(activity: np.ndarray) -> np.ndarray:
    """Number of active frames per local slot over the whole chunk."""
    return np.asarray(activity, dtype=np.float32).sum(axis=0)


def dominant_slots(activity: np.ndarray) -> np.ndarray:
    """Slot with the highest activity per frame, lowest index on ties.

    Silent frames therefore resolve to slot 0.
    """
    return np.argmax(np.asarray(activity), axis=1)


__all__ = [
    "POWERSET_CLASSES",
    "SlidingWindow",
    "clean_frame_mask",
    "decode_powerset",
    "dominant_slots",
    "slot_activities",
]
