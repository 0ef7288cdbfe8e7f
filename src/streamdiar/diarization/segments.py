from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace

import numpy as np

from .embeddings import embedding_quality
from .segmentation import SlidingWindow, dominant_slots
from .types import TimedSpeakerSegment


def dominant_runs(activity: np.ndarray) -> list[tuple[int, int, int]]:
    """Maximal runs of identical dominant slot as ``(slot, start, end)``, end exclusive."""
    dominant = dominant_slots(activity)
    if dominant.size == 0:
        return []
    boundaries = np.flatnonzero(np.diff(dominant)) + 1
    starts = np.concatenate(([0], boundaries))
    ends = np.concatenate((boundaries, [dominant.size]))
    return [(int(dominant[s]), int(s), int(e)) for s, e in zip(starts, ends)]


def build_chunk_segments(
    activity: np.ndarray,
    window: SlidingWindow,
    speaker_ids: Sequence[str | None],
    embeddings: np.ndarray,
    activities: Sequence[float],
    *,
    min_duration: float = 1.0,
    quality_scale: float = 10.0,
    end_limit: float | None = None,
) -> list[TimedSpeakerSegment]:
    """Turn one chunk's raw activity into timed segments of global speakers.

    Runs whose slot has no global id, or shorter than ``min_duration``, are
    dropped.  ``end_limit`` clips end times to the chunk's real audio.
    """
    segments: list[TimedSpeakerSegment] = []
    for slot, start_frame, end_frame in dominant_runs(activity):
        if slot >= len(speaker_ids) or speaker_ids[slot] is None:
            continue
        start_time = window.time(start_frame)
        end_time = window.time(end_frame)
        if end_limit is not None:
            if start_time >= end_limit:
                continue
            end_time = min(end_time, end_limit)
        if end_time - start_time < min_duration or end_time <= start_time:
            continue
        embedding = embeddings[slot]
        run_frames = end_frame - start_frame
        quality = embedding_quality(embedding, quality_scale) * (
            float(activities[slot]) / run_frames
        )
        segments.append(
            TimedSpeakerSegment.create(
                speaker_id=speaker_ids[slot],
                start_time=start_time,
                end_time=end_time,
                embedding=embedding,
                quality_score=quality,
            )
        )
    return segments


def filter_short_segments(
    segments: Iterable[TimedSpeakerSegment], min_duration: float
) -> list[TimedSpeakerSegment]:
    return [seg for seg in segments if seg.duration_seconds >= min_duration]


def merge_adjacent_segments(
    segments: Iterable[TimedSpeakerSegment], max_gap: float
) -> list[TimedSpeakerSegment]:
    """Join consecutive segments of one speaker separated by at most ``max_gap``.

    The merged segment keeps the embedding of its higher-quality part.
    """
    ordered = sorted(segments, key=lambda seg: seg.start_time)
    if not ordered:
        return []
    out = [ordered[0]]
    for seg in ordered[1:]:
        prev = out[-1]
        if seg.speaker_id == prev.speaker_id and seg.start_time - prev.end_time <= max_gap:
            best = seg if seg.quality_score > prev.quality_score else prev
            out[-1] = replace(
                prev,
                end_time=max(prev.end_time, seg.end_time),
                embedding=best.embedding,
                quality_score=best.quality_score,
            )
        else:
            out.append(seg)
    return out


__all__ = [
    "build_chunk_segments",
    "dominant_runs",
    "filter_short_segments",
    "merge_adjacent_segments",
]
