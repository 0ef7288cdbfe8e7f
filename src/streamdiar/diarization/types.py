from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

_STAGE_LABELS = (
    ("Audio Loading", "audio_loading_seconds"),
    ("Segmentation", "segmentation_seconds"),
    ("Embedding Extraction", "embedding_extraction_seconds"),
    ("Speaker Clustering", "speaker_clustering_seconds"),
    ("Post Processing", "post_processing_seconds"),
)


@dataclass(frozen=True)
class TimedSpeakerSegment:
    """One stretch of speech attributed to a global speaker id."""

    speaker_id: str
    start_time: float
    end_time: float
    embedding: tuple[float, ...]
    quality_score: float

    @classmethod
    def create(
        cls,
        speaker_id: str,
        start_time: float,
        end_time: float,
        embedding: Sequence[float] | np.ndarray,
        quality_score: float,
    ) -> TimedSpeakerSegment:
        vec = np.asarray(embedding, dtype=np.float64).reshape(-1)
        return cls(
            speaker_id=str(speaker_id),
            start_time=float(start_time),
            end_time=float(end_time),
            embedding=tuple(float(v) for v in vec),
            quality_score=float(quality_score),
        )

    @property
    def duration_seconds(self) -> float:
        return self.end_time - self.start_time

    def embedding_array(self) -> np.ndarray:
        return np.asarray(self.embedding, dtype=np.float32)

    def to_dict(self, *, include_embedding: bool = False) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "speaker_id": self.speaker_id,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_seconds": self.duration_seconds,
            "quality_score": self.quality_score,
        }
        if include_embedding:
            payload["embedding"] = list(self.embedding)
        return payload


@dataclass(frozen=True)
class PipelineTimings:
    audio_loading_seconds: float = 0.0
    segmentation_seconds: float = 0.0
    embedding_extraction_seconds: float = 0.0
    speaker_clustering_seconds: float = 0.0
    post_processing_seconds: float = 0.0

    @property
    def total_inference_seconds(self) -> float:
        return (
            self.segmentation_seconds
            + self.embedding_extraction_seconds
            + self.speaker_clustering_seconds
        )

    @property
    def total_processing_seconds(self) -> float:
        return sum(getattr(self, attr) for _, attr in _STAGE_LABELS)

    def stage_percentages(self) -> dict[str, float]:
        total = self.total_processing_seconds
        if total <= 0:
            return {}
        return {label: getattr(self, attr) / total * 100.0 for label, attr in _STAGE_LABELS}

    def bottleneck_stage(self) -> str:
        if self.total_processing_seconds <= 0:
            return "Unknown"
        label, _ = max(
            ((label, getattr(self, attr)) for label, attr in _STAGE_LABELS),
            key=lambda item: item[1],
        )
        return label

    def to_dict(self) -> dict[str, float]:
        payload = {attr: getattr(self, attr) for _, attr in _STAGE_LABELS}
        payload["total_inference_seconds"] = self.total_inference_seconds
        payload["total_processing_seconds"] = self.total_processing_seconds
        return payload


@dataclass
class DiarizationResult:
    """Accumulated output of one diarization session.

    Segments are ordered by start time.  They may overlap across speakers.
    ``timings`` is wall-clock diagnostics and does not take part in equality.
    """

    segments: list[TimedSpeakerSegment] = field(default_factory=list)
    speaker_database: dict[str, list[float]] = field(default_factory=dict)
    timings: PipelineTimings = field(default_factory=PipelineTimings, compare=False)
    audio_duration_seconds: float = 0.0

    @property
    def speaker_count(self) -> int:
        return len(self.speaker_database)

    def speakers(self) -> list[str]:
        seen: dict[str, None] = {}
        for seg in self.segments:
            seen.setdefault(seg.speaker_id, None)
        return list(seen)

    def summary(self) -> dict[str, Any]:
        summary: dict[str, Any] = {
            "speaker_count": 0,
            "segment_count": len(self.segments),
            "total_duration_sec": 0.0,
            "per_speaker": {},
        }
        if not self.segments:
            return summary
        per_speaker: dict[str, dict[str, float | int]] = {}
        total_duration = 0.0
        for seg in self.segments:
            entry = per_speaker.setdefault(seg.speaker_id, {"duration_sec": 0.0, "segments": 0})
            entry["duration_sec"] = float(entry["duration_sec"]) + seg.duration_seconds
            entry["segments"] = int(entry["segments"]) + 1
            total_duration += seg.duration_seconds
        summary["speaker_count"] = len(per_speaker)
        summary["total_duration_sec"] = round(total_duration, 3)
        summary["per_speaker"] = {
            speaker: {
                "duration_sec": round(float(stats["duration_sec"]), 3),
                "segments": int(stats["segments"]),
            }
            for speaker, stats in per_speaker.items()
        }
        return summary

    def to_dict(self, *, include_embeddings: bool = False) -> dict[str, Any]:
        return {
            "segments": [
                seg.to_dict(include_embedding=include_embeddings) for seg in self.segments
            ],
            "speaker_database": {k: list(v) for k, v in self.speaker_database.items()},
            "timings": self.timings.to_dict(),
            "audio_duration_seconds": self.audio_duration_seconds,
        }


@dataclass(frozen=True)
class ChunkOutcome:
    """Per-chunk bookkeeping kept for diagnostics."""

    index: int
    start_time: float
    duration_seconds: float
    status: str
    slot_speakers: tuple[str | None, ...] = ()
    slot_activity: tuple[float, ...] = ()
    segment_count: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass(frozen=True)
class AudioValidationResult:
    is_valid: bool
    duration_seconds: float
    issues: tuple[str, ...] = ()


__all__ = [
    "AudioValidationResult",
    "ChunkOutcome",
    "DiarizationResult",
    "PipelineTimings",
    "TimedSpeakerSegment",
]
