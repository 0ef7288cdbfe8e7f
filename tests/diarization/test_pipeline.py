"""End-to-end tests for the chunked diarization orchestrator."""

from __future__ import annotations

import dataclasses

import numpy as np
import pytest
from _helpers import FRAMES, SAMPLE_RATE, ScriptedEmbedding, ScriptedSegmentation, class_track, one_hot_scores

from streamdiar.diarization import AudioChunk, SessionState, SpeakerDiarizer
from streamdiar.errors import (
    NotInitializedError,
    ProviderUnavailableError,
    SessionStateError,
)

STEP = 0.016875
E1 = np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float32)
E2 = np.array([0.9, np.sqrt(1.0 - 0.81), 0.0, 0.0], dtype=np.float32)
E3 = np.array([0.0, 0.0, 1.0, 0.0], dtype=np.float32)
ZERO = np.zeros(4, dtype=np.float32)


def _embeddings(*rows: np.ndarray) -> np.ndarray:
    padded = list(rows) + [ZERO] * (3 - len(rows))
    return np.stack(padded)


def _diarizer(config, segmentation_outputs, embedding_outputs):
    segmentation = ScriptedSegmentation(segmentation_outputs)
    embedding = ScriptedEmbedding(embedding_outputs)
    diarizer = SpeakerDiarizer(config, segmentation=segmentation, embedding=embedding)
    return diarizer, segmentation, embedding


def test_second_chunk_merges_into_existing_speaker(config, chunk_audio):
    scores = one_hot_scores(class_track((1, 200)))
    diarizer, _, _ = _diarizer(config, [scores], [_embeddings(E1), _embeddings(E2)])

    result = diarizer.process_session([chunk_audio(10.0), chunk_audio(10.0)])

    assert [seg.speaker_id for seg in result.segments] == ["1", "1"]
    assert result.segments[0].start_time == pytest.approx(0.0)
    assert result.segments[1].start_time == pytest.approx(10.0)
    assert result.segments[1].end_time == pytest.approx(10.0 + FRAMES * STEP)
    assert list(result.speaker_database) == ["1"]
    stored = np.asarray(result.speaker_database["1"])
    np.testing.assert_allclose(stored - E1, 0.1 * (E2 - E1), atol=1e-6)


def test_distant_embedding_opens_new_speaker(config, chunk_audio):
    scores = one_hot_scores(class_track((1, 200)))
    diarizer, _, _ = _diarizer(config, [scores], [_embeddings(E1), _embeddings(E3)])

    result = diarizer.process_session([chunk_audio(), chunk_audio()])

    assert [seg.speaker_id for seg in result.segments] == ["1", "2"]
    assert result.speaker_count == 2
    np.testing.assert_allclose(result.speaker_database["2"], E3)


def test_repeated_sessions_are_identical(config, chunk_audio):
    scores = [
        one_hot_scores(class_track((1, 150), (2, 150), (3, 200))),
        one_hot_scores(class_track((3, 100), (4, 100), (2, 300))),
    ]
    embeddings = [_embeddings(E1, E3, E2), _embeddings(E2, E3, E1)]
    chunks = [chunk_audio(), chunk_audio(), chunk_audio(5.0)]

    first, _, _ = _diarizer(config, scores, embeddings)
    second, _, _ = _diarizer(config, scores, embeddings)

    result_a = first.process_session(chunks)
    result_b = second.process_session(chunks)

    assert result_a == result_b
    assert result_a.to_dict(include_embeddings=True)["segments"] == result_b.to_dict(
        include_embeddings=True
    )["segments"]


def test_slot_below_activity_floor_is_never_assigned(config, chunk_audio):
    scores = one_hot_scores(class_track((1, 200), (2, 9)))
    diarizer, _, _ = _diarizer(config, [scores], [_embeddings(E1, E3)])

    outcome = diarizer.push_chunk(chunk_audio())
    result = diarizer.finalize()

    assert outcome.slot_speakers == ("1", None, None)
    assert outcome.slot_activity[1] == pytest.approx(9.0)
    assert list(result.speaker_database) == ["1"]


def test_degenerate_embedding_leaves_slot_unassigned(config, chunk_audio):
    scores = one_hot_scores(class_track((1, 300)))
    bad = np.array([np.nan, 1.0, 0.0, 0.0], dtype=np.float32)
    diarizer, _, _ = _diarizer(config, [scores], [_embeddings(bad)])

    outcome = diarizer.push_chunk(chunk_audio())
    result = diarizer.finalize()

    assert outcome.ok
    assert outcome.slot_speakers == (None, None, None)
    assert result.segments == []
    assert result.speaker_database == {}


def test_overlapped_frames_never_reach_embedding_masks(config, chunk_audio):
    scores = one_hot_scores(class_track((1, 100), (4, 50), (2, 100)))
    diarizer, _, embedding = _diarizer(config, [scores], [_embeddings(E1, E3)])

    outcome = diarizer.push_chunk(chunk_audio())

    masks = embedding.masks[0]
    assert masks.shape == (3, FRAMES)
    assert masks[:, 100:150].sum() == 0.0
    assert masks[0, :100].sum() == 100.0
    assert masks[1, 150:250].sum() == 100.0
    # overlapped frames still count toward raw activity
    assert outcome.slot_activity[:2] == (150.0, 150.0)
    np.testing.assert_array_equal(embedding.waveforms[0][0], embedding.waveforms[0][2])


def test_failed_chunk_preserves_database(config, chunk_audio):
    good = one_hot_scores(class_track((1, 300)))
    segmentation_outputs = [good, good, good]
    embedding_outputs = [_embeddings(E1), RuntimeError("embedding backend crashed"), _embeddings(E2)]
    diarizer, _, _ = _diarizer(config, segmentation_outputs, embedding_outputs)

    diarizer.push_chunk(chunk_audio())
    before = diarizer.speaker_database.snapshot()
    failed = diarizer.push_chunk(chunk_audio())
    after_failure = diarizer.speaker_database.snapshot()
    diarizer.push_chunk(chunk_audio())
    result = diarizer.finalize()

    assert failed.status == "skipped"
    assert "[embedding]" in failed.error
    assert after_failure == before
    assert [seg.start_time for seg in result.segments] == pytest.approx([0.0, 20.0])
    assert [o.status for o in diarizer.chunk_outcomes()] == ["ok", "skipped", "ok"]


def test_segmentation_failure_skips_only_that_chunk(config, chunk_audio):
    good = one_hot_scores(class_track((1, 300)))
    diarizer, _, embedding = _diarizer(
        config, [ValueError("bad model output"), good], [_embeddings(E1)]
    )

    first = diarizer.push_chunk(chunk_audio())
    second = diarizer.push_chunk(chunk_audio())

    assert first.status == "skipped"
    assert "[segmentation]" in first.error
    assert second.ok
    assert len(embedding.masks) == 1


def test_malformed_segmentation_output_is_an_inference_failure(config, chunk_audio):
    diarizer, _, _ = _diarizer(config, [np.zeros((FRAMES, 4))], [_embeddings(E1)])

    outcome = diarizer.push_chunk(chunk_audio())

    assert outcome.status == "skipped"
    assert diarizer.speaker_database.is_empty()


@pytest.mark.parametrize(
    "samples",
    [
        np.zeros(0, dtype=np.float32),
        np.zeros((2, 100), dtype=np.float32),
        np.full(100, np.nan, dtype=np.float32),
        np.zeros(SAMPLE_RATE * 11, dtype=np.float32),
    ],
)
def test_invalid_audio_is_skipped_without_inference(config, samples):
    good = one_hot_scores(class_track((1, 300)))
    diarizer, segmentation, _ = _diarizer(config, [good], [_embeddings(E1)])

    outcome = diarizer.push_chunk(samples)

    assert outcome.status == "skipped"
    assert segmentation.calls == []
    assert diarizer.state is SessionState.PROCESSING


def test_short_final_chunk_is_zero_padded_and_clipped(config, chunk_audio):
    scores = one_hot_scores(class_track((1, FRAMES)))
    diarizer, segmentation, _ = _diarizer(config, [scores], [_embeddings(E1), _embeddings(E1)])
    tail = chunk_audio(4.0)

    result = diarizer.process_session([chunk_audio(), tail])

    padded = segmentation.calls[1]
    assert padded.shape == (config.chunk_samples,)
    np.testing.assert_array_equal(padded[: tail.size], tail)
    assert not padded[tail.size :].any()
    assert result.segments[-1].end_time == pytest.approx(14.0)
    assert result.audio_duration_seconds == pytest.approx(14.0)


def test_global_minimum_duration_filter(config, chunk_audio):
    scores = one_hot_scores(class_track((1, 200)))
    diarizer, _, _ = _diarizer(config, [scores], [_embeddings(E1)])

    diarizer.push_chunk(chunk_audio(0.5))
    result = diarizer.finalize()

    assert result.segments == []
    assert list(result.speaker_database) == ["1"]


def test_adjacent_segments_merge_when_enabled(config, chunk_audio):
    merged_config = dataclasses.replace(config, merge_segments=True)
    scores = one_hot_scores(class_track((1, FRAMES)))
    diarizer, _, _ = _diarizer(merged_config, [scores], [_embeddings(E1), _embeddings(E2)])

    result = diarizer.process_session([chunk_audio(), chunk_audio()])

    assert len(result.segments) == 1
    assert result.segments[0].start_time == pytest.approx(0.0)
    assert result.segments[0].end_time == pytest.approx(10.0 + FRAMES * STEP)


def test_engine_requires_initialization(config, chunk_audio):
    diarizer = SpeakerDiarizer(config)

    assert diarizer.state is SessionState.IDLE
    with pytest.raises(NotInitializedError):
        diarizer.process_session([chunk_audio()])
    with pytest.raises(NotInitializedError):
        diarizer.push_chunk(chunk_audio())
    with pytest.raises(NotInitializedError):
        diarizer.finalize()


def test_initialize_rejects_unready_provider(config):
    class _NotReady(ScriptedSegmentation):
        is_ready = False

    with pytest.raises(ProviderUnavailableError):
        SpeakerDiarizer(config, segmentation=_NotReady([]), embedding=ScriptedEmbedding([]))
    with pytest.raises(ProviderUnavailableError):
        SpeakerDiarizer(config, segmentation=ScriptedSegmentation([]), embedding=None)


def test_session_state_transitions(config, chunk_audio):
    scores = one_hot_scores(class_track((1, 300)))
    diarizer, _, _ = _diarizer(config, [scores], [_embeddings(E1)])

    assert diarizer.state is SessionState.INITIALIZED
    diarizer.push_chunk(chunk_audio())
    assert diarizer.state is SessionState.PROCESSING
    result = diarizer.finalize()
    assert diarizer.state is SessionState.FINALIZED
    assert diarizer.last_result is result

    with pytest.raises(SessionStateError):
        diarizer.push_chunk(chunk_audio())

    diarizer.reset()
    assert diarizer.state is SessionState.INITIALIZED
    assert diarizer.speaker_database.is_empty()

    diarizer.cleanup()
    assert diarizer.state is SessionState.IDLE
    assert not diarizer.is_available


def test_raw_chunks_are_placed_back_to_back(config, chunk_audio):
    scores = one_hot_scores(class_track((1, FRAMES)))
    diarizer, _, _ = _diarizer(config, [scores], [_embeddings(E1)])

    diarizer.push_chunk(chunk_audio(10.0))
    outcome = diarizer.push_chunk(chunk_audio(10.0))
    explicit = diarizer.push_chunk(AudioChunk(chunk_audio(10.0), 42.0, SAMPLE_RATE))

    assert outcome.start_time == pytest.approx(10.0)
    assert explicit.start_time == pytest.approx(42.0)


def test_diarize_audio_splits_into_nominal_chunks(config, chunk_audio):
    scores = one_hot_scores(class_track((1, FRAMES)))
    diarizer, segmentation, _ = _diarizer(config, [scores], [_embeddings(E1)])

    result = diarizer.diarize_audio(chunk_audio(25.0))

    assert len(segmentation.calls) == 3
    assert [seg.start_time for seg in result.segments] == pytest.approx([0.0, 10.0, 20.0])
    assert result.audio_duration_seconds == pytest.approx(25.0)


def test_diarize_audio_resamples_input(config):
    scores = one_hot_scores(class_track((1, FRAMES)))
    diarizer, segmentation, _ = _diarizer(config, [scores], [_embeddings(E1)])
    stereo = np.ones((2, 2 * SAMPLE_RATE * 20), dtype=np.float32) * 0.1

    result = diarizer.diarize_audio(stereo, sample_rate=2 * SAMPLE_RATE)

    assert len(segmentation.calls) == 2
    assert result.audio_duration_seconds == pytest.approx(20.0)


def test_compare_speakers_uses_best_segments(config, chunk_audio):
    scores = one_hot_scores(class_track((1, FRAMES)))
    diarizer, _, _ = _diarizer(config, [scores], [_embeddings(E1), _embeddings(E2)])

    similarity = diarizer.compare_speakers(chunk_audio(), chunk_audio())

    assert similarity == pytest.approx(90.0, abs=1e-3)
    # the caller's own session is untouched
    assert diarizer.speaker_database.is_empty()


def test_result_reports_timings_and_summary(config, chunk_audio):
    scores = one_hot_scores(class_track((1, 300), (2, 289)))
    diarizer, _, _ = _diarizer(config, [scores], [_embeddings(E1, E3)])

    result = diarizer.process_session([chunk_audio()])

    summary = result.summary()
    assert summary["speaker_count"] == 2
    assert summary["segment_count"] == 2
    assert result.timings.total_processing_seconds >= 0.0
    assert result.timings.bottleneck_stage() in {
        "Unknown",
        "Audio Loading",
        "Segmentation",
        "Embedding Extraction",
        "Speaker Clustering",
        "Post Processing",
    }
    payload = diarizer.get_debug_payload()
    assert payload["state"] == "finalized"
    assert payload["chunks"][0]["slot_speakers"] == ["1", "2", None]
    assert payload["config"]["clustering_threshold"] == pytest.approx(0.7)


def test_validate_audio_reports_issues(config):
    diarizer = SpeakerDiarizer(config)

    quiet = diarizer.validate_audio(np.zeros(SAMPLE_RATE * 2, dtype=np.float32))
    short = diarizer.validate_audio(np.full(SAMPLE_RATE // 2, 0.5, dtype=np.float32))
    empty = diarizer.validate_audio(np.zeros(0, dtype=np.float32))
    fine = diarizer.validate_audio(np.full(SAMPLE_RATE * 2, 0.5, dtype=np.float32))

    assert not quiet.is_valid
    assert quiet.issues == ("Audio too quiet or silent",)
    assert not short.is_valid
    assert short.duration_seconds == pytest.approx(0.5)
    assert "No audio data" in empty.issues
    assert fine.is_valid


@pytest.mark.parametrize(
    "start_time, sample_rate",
    [(0.0, 0), (0.0, -SAMPLE_RATE), (float("nan"), SAMPLE_RATE), (float("inf"), SAMPLE_RATE)],
)
def test_chunk_with_unusable_timing_is_skipped(config, chunk_audio, start_time, sample_rate):
    scores = one_hot_scores(class_track((1, FRAMES)))
    diarizer, segmentation, _ = _diarizer(config, [scores], [_embeddings(E1)])
    diarizer.push_chunk(chunk_audio())
    before = diarizer.speaker_database.snapshot()

    outcome = diarizer.push_chunk(AudioChunk(chunk_audio(), start_time, sample_rate))
    after_skip = diarizer.speaker_database.snapshot()
    following = diarizer.push_chunk(chunk_audio())
    result = diarizer.finalize()

    assert outcome.status == "skipped"
    assert "[input]" in outcome.error
    assert outcome.duration_seconds == 0.0
    assert len(segmentation.calls) == 2
    assert following.start_time == pytest.approx(10.0)
    assert after_skip == before
    assert [seg.start_time for seg in result.segments] == pytest.approx([0.0, 10.0])
    assert result.audio_duration_seconds == pytest.approx(20.0)


def test_start_time_conflicts_with_audio_chunk(config, chunk_audio):
    scores = one_hot_scores(class_track((1, FRAMES)))
    diarizer, segmentation, _ = _diarizer(config, [scores], [_embeddings(E1)])

    with pytest.raises(ValueError, match="start_time"):
        diarizer.push_chunk(AudioChunk(chunk_audio(), 5.0, SAMPLE_RATE), start_time=7.0)

    assert segmentation.calls == []
    assert diarizer.state is SessionState.INITIALIZED
    assert diarizer.push_chunk(chunk_audio(), start_time=7.0).start_time == pytest.approx(7.0)
