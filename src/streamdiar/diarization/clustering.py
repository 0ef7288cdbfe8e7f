"""Online speaker assignment against the session speaker database.

Each validated slot embedding is matched to its nearest stored speaker by
cosine distance.  Distances above the clustering threshold open a new
speaker; anything else merges into the nearest one.  Decisions are final:
there is no later re-clustering pass over earlier chunks.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from .logger import logger
from .registry import SpeakerDatabase


def cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    """``1 - cos(a, b)``; ``inf`` for empty, mismatched or zero-magnitude input."""
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.size == 0 or va.size != vb.size:
        return math.inf
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na <= 0.0 or nb <= 0.0 or not (math.isfinite(na) and math.isfinite(nb)):
        return math.inf
    return 1.0 - float(np.dot(va, vb) / (na * nb))


def cosine_distances_to(embedding: np.ndarray, references: np.ndarray) -> np.ndarray:
    """Cosine distance from ``embedding`` to every row of ``references``.

    Rows with zero magnitude (and a zero-magnitude query) yield ``inf``.
    """
    query = np.asarray(embedding, dtype=np.float64).reshape(1, -1)
    refs = np.asarray(references, dtype=np.float64)
    if refs.ndim != 2 or refs.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)
    if refs.shape[1] != query.shape[1] or query.shape[1] == 0:
        return np.full(refs.shape[0], np.inf)
    if not np.isfinite(query).all() or np.linalg.norm(query) <= 0.0:
        return np.full(refs.shape[0], np.inf)
    distances = 1.0 - cosine_similarity(query, refs)[0]
    ref_norms = np.linalg.norm(refs, axis=1)
    distances[(ref_norms <= 0.0) | ~np.isfinite(ref_norms)] = np.inf
    return distances


@dataclass(frozen=True)
class Assignment:
    speaker_id: str
    distance: float
    is_new: bool


class IncrementalAssigner:
    def __init__(self, threshold: float = 0.7, alpha: float = 0.9) -> None:
        self.threshold = float(threshold)
        self.alpha = float(alpha)

    def assign(self, embedding: np.ndarray, database: SpeakerDatabase) -> Assignment:
        """Map ``embedding`` to a global id, mutating ``database``."""
        if database.is_empty():
            speaker_id = database.enroll(embedding)
            logger.debug("Speaker %s created (empty database)", speaker_id)
            return Assignment(speaker_id=speaker_id, distance=math.inf, is_new=True)

        ids, refs = database.matrix()
        distances = cosine_distances_to(embedding, refs)
        best = int(np.argmin(distances))
        d_min = float(distances[best])
        if d_min > self.threshold:
            speaker_id = database.enroll(embedding)
            logger.debug(
                "Speaker %s created (nearest %s at distance %.4f > %.3f)",
                speaker_id,
                ids[best],
                d_min,
                self.threshold,
            )
            return Assignment(speaker_id=speaker_id, distance=d_min, is_new=True)

        database.update(ids[best], embedding, alpha=self.alpha)
        logger.debug("Merged into speaker %s (distance %.4f)", ids[best], d_min)
        return Assignment(speaker_id=ids[best], distance=d_min, is_new=False)


__all__ = ["Assignment", "IncrementalAssigner", "cosine_distance", "cosine_distances_to"]
