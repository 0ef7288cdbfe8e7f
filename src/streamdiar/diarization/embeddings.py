from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .config import NUM_LOCAL_SLOTS
from .segmentation import clean_frame_mask


@dataclass(frozen=True, eq=False)
class EmbeddingRequest:
    """Inputs for one embedding-provider call.

    ``waveforms`` repeats the padded chunk audio once per local slot and
    ``masks`` holds each slot's activity restricted to clean frames, so a
    frame where two slots overlap never contributes to either embedding.
    """

    waveforms: np.ndarray
    masks: np.ndarray

    @property
    def num_slots(self) -> int:
        return int(self.masks.shape[0])

    @property
    def num_frames(self) -> int:
        return int(self.masks.shape[1])


def build_embedding_request(audio: np.ndarray, activity: np.ndarray) -> EmbeddingRequest:
    wav = np.asarray(audio, dtype=np.float32).reshape(-1)
    act = np.asarray(activity, dtype=np.float32)
    if act.ndim != 2 or act.shape[1] != NUM_LOCAL_SLOTS:
        raise ValueError(f"activity must have shape [frames, {NUM_LOCAL_SLOTS}], got {act.shape}")
    clean = clean_frame_mask(act)
    masks = np.ascontiguousarray((act * clean[:, None]).T, dtype=np.float32)
    waveforms = np.ascontiguousarray(np.tile(wav[None, :], (NUM_LOCAL_SLOTS, 1)))
    return EmbeddingRequest(waveforms=waveforms, masks=masks)


def coerce_embeddings(raw: np.ndarray, num_slots: int = NUM_LOCAL_SLOTS) -> np.ndarray:
    """Normalise provider output to a ``[num_slots, D]`` float32 matrix."""
    arr = np.asarray(raw, dtype=np.float32)
    while arr.ndim > 2 and arr.shape[0] == 1:
        arr = arr[0]
    if arr.ndim != 2 or arr.shape[0] != num_slots or arr.shape[1] == 0:
        raise ValueError(
            f"embedding provider must return shape [{num_slots}, D], got {np.shape(raw)}"
        )
    return arr


def embedding_magnitude(embedding: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(embedding, dtype=np.float64).reshape(-1)))


def embedding_quality(embedding: np.ndarray, scale: float = 10.0) -> float:
    """Magnitude-based quality in ``[0, 1]``."""
    magnitude = embedding_magnitude(embedding)
    if not np.isfinite(magnitude):
        return 0.0
    return min(1.0, magnitude / scale)


def is_valid_embedding(embedding: np.ndarray, min_magnitude: float = 0.1) -> bool:
    vec = np.asarray(embedding, dtype=np.float64).reshape(-1)
    if vec.size == 0:
        return False
    if not np.all(np.isfinite(vec)):
        return False
    return embedding_magnitude(vec) > min_magnitude


__all__ = [
    "EmbeddingRequest",
    "build_embedding_request",
    "coerce_embeddings",
    "embedding_magnitude",
    "embedding_quality",
    "is_valid_embedding",
]
