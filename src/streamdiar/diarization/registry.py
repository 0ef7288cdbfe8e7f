from __future__ import annotations

from collections.abc import Iterator

import numpy as np


class SpeakerDatabase:
    """Session-scoped store of global speaker ids and their embeddings.

    Ids are allocated as ``"1"``, ``"2"``, ... and never removed or reused
    while the session lives.  Merges update the stored vector in place.
    """

    def __init__(self) -> None:
        self._speakers: dict[str, np.ndarray] = {}
        self._merge_counts: dict[str, int] = {}
        self._enrolled = 0

    def __len__(self) -> int:
        return len(self._speakers)

    def __contains__(self, speaker_id: object) -> bool:
        return speaker_id in self._speakers

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._speakers))

    def ids(self) -> list[str]:
        return list(self._speakers)

    def is_empty(self) -> bool:
        return not self._speakers

    @property
    def embedding_dim(self) -> int | None:
        for vec in self._speakers.values():
            return int(vec.size)
        return None

    @property
    def new_speaker_count(self) -> int:
        """Number of successful ``enroll`` calls."""
        return self._enrolled

    @property
    def merge_count(self) -> int:
        return sum(self._merge_counts.values())

    def merges_for(self, speaker_id: str) -> int:
        return self._merge_counts.get(speaker_id, 0)

    def get(self, speaker_id: str) -> np.ndarray:
        return self._speakers[speaker_id].copy()

    def next_id(self) -> str:
        return str(len(self._speakers) + 1)

    def enroll(self, embedding: np.ndarray) -> str:
        """Store ``embedding`` verbatim under a freshly allocated id."""
        vec = np.array(embedding, dtype=np.float64).reshape(-1)
        dim = self.embedding_dim
        if dim is not None and vec.size != dim:
            raise ValueError(f"embedding dimension {vec.size} does not match database ({dim})")
        speaker_id = self.next_id()
        self._speakers[speaker_id] = vec
        self._merge_counts[speaker_id] = 0
        self._enrolled += 1
        return speaker_id

    def update(self, speaker_id: str, embedding: np.ndarray, alpha: float = 0.9) -> None:
        """Exponential moving average: ``old = alpha * old + (1 - alpha) * new``."""
        old = self._speakers[speaker_id]
        new = np.asarray(embedding, dtype=np.float64).reshape(-1)
        if new.shape != old.shape:
            raise ValueError(
                f"embedding dimension {new.size} does not match speaker {speaker_id} ({old.size})"
            )
        old *= alpha
        old += (1.0 - alpha) * new
        self._merge_counts[speaker_id] += 1

    def matrix(self) -> tuple[list[str], np.ndarray]:
        ids = list(self._speakers)
        if not ids:
            return ids, np.zeros((0, 0), dtype=np.float64)
        return ids, np.vstack([self._speakers[i] for i in ids])

    def snapshot(self) -> dict[str, list[float]]:
        return {speaker_id: vec.tolist() for speaker_id, vec in self._speakers.items()}


__all__ = ["SpeakerDatabase"]
