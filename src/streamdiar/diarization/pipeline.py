from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable
from enum import Enum
from typing import Any

import numpy as np

from ..errors import (
    InferenceError,
    InvalidAudioError,
    NotInitializedError,
    ProviderUnavailableError,
    SessionStateError,
    coerce_stage_error,
)
from .audio import AudioChunk, iter_chunks, prepare_waveform, validate_audio
from .clustering import IncrementalAssigner, cosine_distance
from .config import NUM_LOCAL_SLOTS, DiarizationConfig
from .embeddings import build_embedding_request, coerce_embeddings, is_valid_embedding
from .logger import logger
from .providers import EmbeddingProvider, SegmentationProvider, provider_ready
from .registry import SpeakerDatabase
from .segmentation import SlidingWindow, decode_powerset, slot_activities
from .segments import build_chunk_segments, filter_short_segments, merge_adjacent_segments
from .types import (
    AudioValidationResult,
    ChunkOutcome,
    DiarizationResult,
    PipelineTimings,
    TimedSpeakerSegment,
)
from .utils import round_floats


class SessionState(str, Enum):
    IDLE = "idle"
    INITIALIZED = "initialized"
    PROCESSING = "processing"
    FINALIZED = "finalized"


class SpeakerDiarizer:
    """Online diarization engine driving one session chunk by chunk.

    The diarizer exclusively owns the session's :class:`SpeakerDatabase` and
    processes chunks strictly in arrival order; it is not safe to share one
    instance between threads.  Independent sessions use independent
    instances.
    """

    def __init__(
        self,
        config: DiarizationConfig | None = None,
        *,
        segmentation: SegmentationProvider | None = None,
        embedding: EmbeddingProvider | None = None,
    ) -> None:
        self.config = config or DiarizationConfig()
        self.assigner = IncrementalAssigner(
            threshold=self.config.clustering_threshold,
            alpha=self.config.embedding_alpha,
        )
        self._segmentation: SegmentationProvider | None = None
        self._embedding: EmbeddingProvider | None = None
        self._state = SessionState.IDLE
        self._new_session()
        if segmentation is not None or embedding is not None:
            self.initialize(segmentation, embedding)

    # --- lifecycle ---------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_available(self) -> bool:
        return self._segmentation is not None and self._embedding is not None

    @property
    def speaker_database(self) -> SpeakerDatabase:
        return self._database

    @property
    def last_result(self) -> DiarizationResult | None:
        return self._result

    def initialize(
        self,
        segmentation: SegmentationProvider | None,
        embedding: EmbeddingProvider | None,
    ) -> None:
        """Bind ready inference providers and open an empty session."""
        for name, provider, method in (
            ("segmentation", segmentation, "segment"),
            ("embedding", embedding, "embed"),
        ):
            if provider is None or not callable(getattr(provider, method, None)):
                raise ProviderUnavailableError(
                    f"{name} provider is missing or lacks {method}()", stage=name
                )
            if not provider_ready(provider):
                raise ProviderUnavailableError(f"{name} provider is not ready", stage=name)
        self._segmentation = segmentation
        self._embedding = embedding
        self._new_session()
        self._state = SessionState.INITIALIZED
        logger.info("Diarization engine initialized")

    def cleanup(self) -> None:
        """Release providers and discard the current session."""
        self._segmentation = None
        self._embedding = None
        self._new_session()
        self._state = SessionState.IDLE
        logger.info("Diarization resources cleaned up")

    def reset(self) -> None:
        """Start a fresh session with an empty speaker database."""
        self._require_ready("reset")
        self._new_session()
        self._state = SessionState.INITIALIZED

    def _new_session(self) -> None:
        self._database = SpeakerDatabase()
        self._segments: list[TimedSpeakerSegment] = []
        self._outcomes: list[ChunkOutcome] = []
        self._chunk_index = 0
        self._next_offset = 0.0
        self._audio_duration = 0.0
        self._stage_seconds: dict[str, float] = {
            "audio_loading_seconds": 0.0,
            "segmentation_seconds": 0.0,
            "embedding_extraction_seconds": 0.0,
            "speaker_clustering_seconds": 0.0,
            "post_processing_seconds": 0.0,
        }
        self._result: DiarizationResult | None = None

    def _require_ready(self, operation: str) -> None:
        if not self.is_available or self._state is SessionState.IDLE:
            raise NotInitializedError(
                "Diarization engine not initialized. Call initialize() first.",
                stage=operation,
            )

    # --- streaming API -----------------------------------------------------
    def push_chunk(
        self,
        chunk: AudioChunk | np.ndarray,
        start_time: float | None = None,
    ) -> ChunkOutcome:
        """Process the next chunk of the session.

        Raw arrays are placed right after the previous chunk unless
        ``start_time`` is given; an :class:`AudioChunk` carries its own offset
        and passing ``start_time`` with one raises ``ValueError``.  Invalid
        audio and provider failures skip the chunk without touching the
        speaker database.
        """
        self._require_ready("push_chunk")
        if self._state is SessionState.FINALIZED:
            raise SessionStateError(
                "session already finalized; call reset() to start a new one",
                stage="push_chunk",
            )
        if isinstance(chunk, AudioChunk) and start_time is not None:
            raise ValueError("start_time cannot be combined with an AudioChunk")
        self._state = SessionState.PROCESSING
        if not isinstance(chunk, AudioChunk):
            offset = self._next_offset if start_time is None else float(start_time)
            chunk = AudioChunk(
                samples=np.asarray(chunk), start_time=offset, sample_rate=self.config.sample_rate
            )
        index = self._chunk_index
        self._chunk_index += 1
        timing_ok = chunk.has_valid_timing
        if timing_ok:
            self._next_offset = chunk.end_time
        try:
            outcome, segments = self._process_chunk(index, chunk)
        except (InvalidAudioError, InferenceError) as exc:
            logger.warning("Skipping chunk %d at %.2fs: %s", index, chunk.start_time, exc)
            outcome = ChunkOutcome(
                index=index,
                start_time=chunk.start_time,
                duration_seconds=chunk.duration_seconds if timing_ok else 0.0,
                status="skipped",
                error=str(exc),
            )
            segments = []
        else:
            self._audio_duration += chunk.duration_seconds
        self._segments.extend(segments)
        self._outcomes.append(outcome)
        return outcome

    def finalize(self) -> DiarizationResult:
        """Apply post-processing and return the accumulated session result."""
        self._require_ready("finalize")
        if self._state is SessionState.FINALIZED:
            raise SessionStateError("session already finalized", stage="finalize")
        start = time.perf_counter()
        segments = filter_short_segments(self._segments, self.config.min_segment_duration)
        if self.config.merge_segments:
            segments = merge_adjacent_segments(segments, self.config.min_silence_gap)
        segments = sorted(segments, key=lambda seg: seg.start_time)
        self._stage_seconds["post_processing_seconds"] += time.perf_counter() - start
        timings = PipelineTimings(**self._stage_seconds)
        self._result = DiarizationResult(
            segments=segments,
            speaker_database=self._database.snapshot(),
            timings=timings,
            audio_duration_seconds=self._audio_duration,
        )
        self._state = SessionState.FINALIZED
        skipped = sum(1 for outcome in self._outcomes if not outcome.ok)
        logger.info(
            "Diarization finished: %d chunks (%d skipped), %d segments, %d speakers "
            "in %.2fs (segmentation %.2fs, embedding %.2fs, clustering %.2fs, post %.2fs)",
            len(self._outcomes),
            skipped,
            len(segments),
            len(self._database),
            timings.total_processing_seconds,
            timings.segmentation_seconds,
            timings.embedding_extraction_seconds,
            timings.speaker_clustering_seconds,
            timings.post_processing_seconds,
        )
        return self._result

    # --- batch API ---------------------------------------------------------
    def process_session(self, chunks: Iterable[AudioChunk | np.ndarray]) -> DiarizationResult:
        """Diarize an ordered sequence of chunks as one fresh session."""
        self.reset()
        for chunk in chunks:
            self.push_chunk(chunk)
        return self.finalize()

    def diarize_audio(self, samples: np.ndarray, sample_rate: int | None = None) -> DiarizationResult:
        """Split a whole waveform into nominal chunks and diarize it."""
        self._require_ready("diarize_audio")
        sr = int(sample_rate or self.config.sample_rate)
        start = time.perf_counter()
        wav = prepare_waveform(samples, sr, self.config.sample_rate)
        loading = time.perf_counter() - start
        logger.info(
            "Processing %.1f minutes of audio (sr=%d)",
            wav.size / float(self.config.sample_rate) / 60.0,
            self.config.sample_rate,
        )
        chunks = iter_chunks(wav, self.config.sample_rate, self.config.chunk_duration_sec)
        self.reset()
        self._stage_seconds["audio_loading_seconds"] = loading
        for chunk in chunks:
            self.push_chunk(chunk)
        return self.finalize()

    def compare_speakers(
        self,
        audio1: np.ndarray,
        audio2: np.ndarray,
        sample_rate: int | None = None,
    ) -> float:
        """Similarity percentage between the dominant voices of two clips."""
        self._require_ready("compare_speakers")
        best: list[TimedSpeakerSegment] = []
        for audio in (audio1, audio2):
            session = SpeakerDiarizer(
                self.config, segmentation=self._segmentation, embedding=self._embedding
            )
            result = session.diarize_audio(audio, sample_rate)
            if not result.segments:
                raise InferenceError(
                    "Failed to extract speaker embedding from audio", stage="compare"
                )
            best.append(max(result.segments, key=lambda seg: seg.quality_score))
        distance = cosine_distance(best[0].embedding_array(), best[1].embedding_array())
        if not math.isfinite(distance):
            return 0.0
        return max(0.0, (1.0 - distance) * 100.0)

    # --- helpers -----------------------------------------------------------
    def validate_audio(self, samples: np.ndarray) -> AudioValidationResult:
        return validate_audio(
            samples,
            self.config.sample_rate,
            min_duration_sec=self.config.min_audio_duration_sec,
            min_rms=self.config.min_audio_rms,
        )

    def validate_embedding(self, embedding: np.ndarray) -> bool:
        return is_valid_embedding(embedding, self.config.min_embedding_magnitude)

    def chunk_outcomes(self) -> list[ChunkOutcome]:
        return list(self._outcomes)

    def get_debug_payload(self) -> dict[str, Any]:
        """Structured diagnostics about the current or last session."""
        return {
            "state": self._state.value,
            "config": self.config.model_dump(),
            "speaker_count": len(self._database),
            "merges": self._database.merge_count,
            "merges_per_speaker": {sid: self._database.merges_for(sid) for sid in self._database},
            "chunks": [
                {
                    "index": o.index,
                    "start_time": round_floats(o.start_time),
                    "status": o.status,
                    "slot_speakers": list(o.slot_speakers),
                    "slot_activity": round_floats(list(o.slot_activity)),
                    "segments": o.segment_count,
                    "error": o.error,
                }
                for o in self._outcomes
            ],
            "timings": round_floats(dict(self._stage_seconds)),
        }

    def _log_detail(self, msg: str, *args: Any) -> None:
        logger.log(logging.INFO if self.config.debug else logging.DEBUG, msg, *args)

    def _process_chunk(
        self, index: int, chunk: AudioChunk
    ) -> tuple[ChunkOutcome, list[TimedSpeakerSegment]]:
        cfg = self.config
        if chunk.sample_rate != cfg.sample_rate:
            raise InvalidAudioError(
                f"chunk sample rate {chunk.sample_rate} differs from configured {cfg.sample_rate}",
                stage="input",
                context={"chunk": index},
            )
        padded = chunk.padded(cfg.chunk_samples)

        start = time.perf_counter()
        try:
            scores = self._segmentation.segment(padded)
            activity = decode_powerset(scores)
        except InferenceError:
            raise
        except Exception as exc:
            raise coerce_stage_error(
                "segmentation",
                f"segmentation failed for chunk {index}",
                context={"chunk": index, "start_time": chunk.start_time},
                cause=exc,
            ) from exc
        seg_elapsed = time.perf_counter() - start

        window = SlidingWindow(
            start=chunk.start_time, duration=cfg.frame_duration_sec, step=cfg.frame_step_sec
        )

        start = time.perf_counter()
        try:
            request = build_embedding_request(padded, activity)
            embeddings = coerce_embeddings(
                self._embedding.embed(request.waveforms, request.masks), NUM_LOCAL_SLOTS
            )
            expected_dim = self._database.embedding_dim
            if expected_dim is not None and embeddings.shape[1] != expected_dim:
                raise ValueError(
                    f"embedding dimension {embeddings.shape[1]} differs from session ({expected_dim})"
                )
        except InferenceError:
            raise
        except Exception as exc:
            raise coerce_stage_error(
                "embedding",
                f"embedding extraction failed for chunk {index}",
                context={"chunk": index, "start_time": chunk.start_time},
                cause=exc,
            ) from exc
        emb_elapsed = time.perf_counter() - start

        # Everything above is side-effect free; the database is only touched below.
        start = time.perf_counter()
        activities = slot_activities(activity)
        speaker_ids: list[str | None] = []
        filtered = invalid = 0
        for slot in range(NUM_LOCAL_SLOTS):
            if activities[slot] < cfg.min_activity_frames:
                filtered += 1
                speaker_ids.append(None)
                continue
            embedding = embeddings[slot]
            if not self.validate_embedding(embedding):
                invalid += 1
                logger.warning(
                    "Chunk %d slot %d: degenerate embedding ignored (activity %.0f frames)",
                    index,
                    slot,
                    activities[slot],
                )
                speaker_ids.append(None)
                continue
            assignment = self.assigner.assign(embedding, self._database)
            self._log_detail(
                "Chunk %d slot %d -> speaker %s (%s, distance %.4f)",
                index,
                slot,
                assignment.speaker_id,
                "new" if assignment.is_new else "merged",
                assignment.distance,
            )
            speaker_ids.append(assignment.speaker_id)
        clu_elapsed = time.perf_counter() - start

        segments = build_chunk_segments(
            activity,
            window,
            speaker_ids,
            embeddings,
            activities,
            min_duration=cfg.min_segment_duration,
            quality_scale=cfg.quality_magnitude_scale,
            end_limit=chunk.end_time,
        )
        self._stage_seconds["segmentation_seconds"] += seg_elapsed
        self._stage_seconds["embedding_extraction_seconds"] += emb_elapsed
        self._stage_seconds["speaker_clustering_seconds"] += clu_elapsed
        self._log_detail(
            "Chunk %d at %.2fs: %d segments, %d slots below activity floor, %d invalid embeddings",
            index,
            chunk.start_time,
            len(segments),
            filtered,
            invalid,
        )
        outcome = ChunkOutcome(
            index=index,
            start_time=chunk.start_time,
            duration_seconds=chunk.duration_seconds,
            status="ok",
            slot_speakers=tuple(speaker_ids),
            slot_activity=tuple(float(a) for a in activities),
            segment_count=len(segments),
        )
        return outcome, segments


__all__ = ["SessionState", "SpeakerDiarizer"]
