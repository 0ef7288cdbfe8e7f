from __future__ import annotations

from .audio import AudioChunk, iter_chunks, prepare_waveform, validate_audio
from .clustering import Assignment, IncrementalAssigner, cosine_distance
from .config import NUM_LOCAL_SLOTS, NUM_POWERSET_CLASSES, DiarizationConfig
from .embeddings import (
    EmbeddingRequest,
    build_embedding_request,
    embedding_quality,
    is_valid_embedding,
)
from .pipeline import SessionState, SpeakerDiarizer
from .providers import (
    CallableEmbeddingProvider,
    CallableSegmentationProvider,
    EmbeddingProvider,
    OnnxEmbeddingProvider,
    OnnxSegmentationProvider,
    SegmentationProvider,
)
from .registry import SpeakerDatabase
from .segmentation import (
    POWERSET_CLASSES,
    SlidingWindow,
    clean_frame_mask,
    decode_powerset,
    slot_activities,
)
from .segments import build_chunk_segments, filter_short_segments, merge_adjacent_segments
from .types import (
    AudioValidationResult,
    ChunkOutcome,
    DiarizationResult,
    PipelineTimings,
    TimedSpeakerSegment,
)

__all__ = [
    "Assignment",
    "AudioChunk",
    "AudioValidationResult",
    "CallableEmbeddingProvider",
    "CallableSegmentationProvider",
    "ChunkOutcome",
    "DiarizationConfig",
    "DiarizationResult",
    "EmbeddingProvider",
    "EmbeddingRequest",
    "IncrementalAssigner",
    "NUM_LOCAL_SLOTS",
    "NUM_POWERSET_CLASSES",
    "OnnxEmbeddingProvider",
    "OnnxSegmentationProvider",
    "POWERSET_CLASSES",
    "PipelineTimings",
    "SegmentationProvider",
    "SessionState",
    "SlidingWindow",
    "SpeakerDatabase",
    "SpeakerDiarizer",
    "TimedSpeakerSegment",
    "build_chunk_segments",
    "build_embedding_request",
    "clean_frame_mask",
    "cosine_distance",
    "decode_powerset",
    "embedding_quality",
    "filter_short_segments",
    "is_valid_embedding",
    "iter_chunks",
    "merge_adjacent_segments",
    "prepare_waveform",
    "slot_activities",
    "validate_audio",
]
