from __future__ import annotations

import math
from collections.abc import Iterator
from dataclasses import dataclass

import librosa
import numpy as np
import scipy.signal

from ..errors import InvalidAudioError
from .types import AudioValidationResult


@dataclass(frozen=True, eq=False)
class AudioChunk:
    """Mono samples for one inference unit plus their absolute offset.

    ``samples`` holds only the real audio; zero padding up to the nominal
    chunk length is applied by :meth:`padded` at inference time.
    """

    samples: np.ndarray
    start_time: float = 0.0
    sample_rate: int = 16000

    @property
    def num_samples(self) -> int:
        return int(np.asarray(self.samples).size)

    @property
    def has_valid_timing(self) -> bool:
        """Positive sample rate and a finite start offset."""
        try:
            return int(self.sample_rate) > 0 and math.isfinite(float(self.start_time))
        except (TypeError, ValueError):
            return False

    @property
    def duration_seconds(self) -> float:
        return self.num_samples / float(self.sample_rate)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration_seconds

    def validated(self, max_samples: int) -> np.ndarray:
        """Return the samples as float32 or raise :class:`InvalidAudioError`."""
        wav = np.asarray(self.samples)
        context = {"start_time": self.start_time}
        if not self.has_valid_timing:
            raise InvalidAudioError(
                f"audio chunk needs a positive sample rate and finite start time, got "
                f"sample_rate={self.sample_rate!r} start_time={self.start_time!r}",
                stage="input",
                context=context,
            )
        if wav.ndim != 1:
            raise InvalidAudioError(
                f"audio chunk must be one-dimensional, got shape {wav.shape}",
                stage="input",
                context=context,
            )
        if wav.size == 0:
            raise InvalidAudioError("audio chunk is empty", stage="input", context=context)
        if wav.size > max_samples:
            raise InvalidAudioError(
                f"audio chunk has {wav.size} samples, more than the nominal {max_samples}",
                stage="input",
                context=context,
            )
        if not np.issubdtype(wav.dtype, np.number):
            raise InvalidAudioError(
                f"audio chunk has non-numeric dtype {wav.dtype}", stage="input", context=context
            )
        wav = wav.astype(np.float32, copy=False)
        if not np.all(np.isfinite(wav)):
            raise InvalidAudioError(
                "audio chunk contains non-finite samples", stage="input", context=context
            )
        return wav

    def padded(self, length: int) -> np.ndarray:
        """Zero-pad the samples to ``length`` for inference."""
        wav = self.validated(length)
        return librosa.util.fix_length(wav, size=length).astype(np.float32, copy=False)


def prepare_waveform(wav: np.ndarray, sr: int, target_sr: int) -> np.ndarray:
    """Down-mix to mono and resample to ``target_sr``."""
    wav = np.asarray(wav)
    if wav.size == 0:
        return np.zeros(0, dtype=np.float32)
    if wav.ndim > 1:
        wav = np.mean(wav, axis=0)
    if sr != target_sr:
        return scipy.signal.resample_poly(wav, target_sr, sr).astype(np.float32)
    return wav.astype(np.float32)


def iter_chunks(
    wav: np.ndarray, sample_rate: int, chunk_duration_sec: float = 10.0
) -> Iterator[AudioChunk]:
    """Split a session waveform into consecutive chunks of nominal duration.

    The final chunk keeps its real (possibly shorter) length.
    """
    chunk_size = int(round(sample_rate * chunk_duration_sec))
    if chunk_size <= 0:
        raise ValueError("chunk duration must cover at least one sample")
    wav = np.asarray(wav)
    for start in range(0, int(wav.shape[0]), chunk_size):
        yield AudioChunk(
            samples=wav[start : start + chunk_size],
            start_time=start / float(sample_rate),
            sample_rate=sample_rate,
        )


def validate_audio(
    samples: np.ndarray,
    sample_rate: int = 16000,
    *,
    min_duration_sec: float = 1.0,
    min_rms: float = 0.01,
) -> AudioValidationResult:
    wav = np.asarray(samples, dtype=np.float32).reshape(-1)
    duration = wav.size / float(sample_rate)
    issues: list[str] = []
    if duration < min_duration_sec:
        issues.append(f"Audio too short (minimum {min_duration_sec:g} second)")
    if wav.size == 0:
        issues.append("No audio data")
    rms = float(np.sqrt(np.mean(wav.astype(np.float64) ** 2))) if wav.size else 0.0
    if not np.isfinite(rms):
        issues.append("Audio contains non-finite samples")
    elif rms < min_rms:
        issues.append("Audio too quiet or silent")
    return AudioValidationResult(
        is_valid=not issues, duration_seconds=duration, issues=tuple(issues)
    )


__all__ = ["AudioChunk", "iter_chunks", "prepare_waveform", "validate_audio"]
