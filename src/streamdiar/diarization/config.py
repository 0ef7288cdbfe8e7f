from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import fields as dataclass_fields
from typing import Any

from ..errors import ConfigurationError
from .utils import bool_env

NUM_LOCAL_SLOTS = 3
NUM_POWERSET_CLASSES = 7

_BOOL_FIELDS = frozenset({"merge_segments", "debug"})
_INT_FIELDS = frozenset({"sample_rate"})


def _ensure_numeric_range(
    name: str,
    value: float,
    *,
    ge: float | None = None,
    gt: float | None = None,
    le: float | None = None,
    lt: float | None = None,
) -> None:
    """Validate numeric range constraints for configuration fields."""

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a number", stage="config")
    if ge is not None and value < ge:
        raise ConfigurationError(f"{name} must be >= {ge}", stage="config")
    if gt is not None and value <= gt:
        raise ConfigurationError(f"{name} must be > {gt}", stage="config")
    if le is not None and value > le:
        raise ConfigurationError(f"{name} must be <= {le}", stage="config")
    if lt is not None and value >= lt:
        raise ConfigurationError(f"{name} must be < {lt}", stage="config")


@dataclass(slots=True)
class DiarizationConfig:
    """Tunables for the online diarization engine.

    ``clustering_threshold`` is the cosine distance above which an embedding
    opens a new speaker instead of merging into its nearest neighbour.
    ``embedding_alpha`` weights the stored embedding on every merge
    (``old = alpha * old + (1 - alpha) * new``).  Both are empirically tuned
    and dataset dependent.
    """

    sample_rate: int = 16000
    chunk_duration_sec: float = 10.0
    clustering_threshold: float = 0.7
    min_segment_duration: float = 1.0
    min_silence_gap: float = 0.5
    min_activity_frames: float = 10.0
    embedding_alpha: float = 0.9
    frame_step_sec: float = 0.016875
    frame_duration_sec: float = 0.0619375
    min_embedding_magnitude: float = 0.1
    quality_magnitude_scale: float = 10.0
    merge_segments: bool = False
    min_audio_rms: float = 0.01
    min_audio_duration_sec: float = 1.0
    debug: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.sample_rate, bool) or not isinstance(self.sample_rate, int):
            raise ConfigurationError("sample_rate must be an integer > 0", stage="config")
        _ensure_numeric_range("sample_rate", self.sample_rate, gt=0)
        _ensure_numeric_range("chunk_duration_sec", self.chunk_duration_sec, gt=0.0)
        _ensure_numeric_range("clustering_threshold", self.clustering_threshold, ge=0.0, le=1.0)
        _ensure_numeric_range("min_segment_duration", self.min_segment_duration, ge=0.0)
        _ensure_numeric_range("min_silence_gap", self.min_silence_gap, ge=0.0)
        _ensure_numeric_range("min_activity_frames", self.min_activity_frames, ge=0.0)
        _ensure_numeric_range("embedding_alpha", self.embedding_alpha, ge=0.0, lt=1.0)
        _ensure_numeric_range("frame_step_sec", self.frame_step_sec, gt=0.0)
        _ensure_numeric_range("frame_duration_sec", self.frame_duration_sec, gt=0.0)
        if self.frame_duration_sec < self.frame_step_sec:
            raise ConfigurationError(
                "frame_duration_sec must be >= frame_step_sec", stage="config"
            )
        _ensure_numeric_range("min_embedding_magnitude", self.min_embedding_magnitude, ge=0.0)
        _ensure_numeric_range("quality_magnitude_scale", self.quality_magnitude_scale, gt=0.0)
        _ensure_numeric_range("min_audio_rms", self.min_audio_rms, ge=0.0)
        _ensure_numeric_range("min_audio_duration_sec", self.min_audio_duration_sec, ge=0.0)
        self.merge_segments = bool(self.merge_segments)
        self.debug = bool(self.debug)

    @property
    def chunk_samples(self) -> int:
        """Nominal number of samples fed to the segmentation provider per chunk."""
        return int(round(self.sample_rate * self.chunk_duration_sec))

    def model_dump(self) -> dict[str, Any]:
        """Return the configuration as a dictionary."""

        return {field.name: getattr(self, field.name) for field in dataclass_fields(self)}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | DiarizationConfig) -> DiarizationConfig:
        """Validate a mapping of overrides and construct a configuration."""

        if isinstance(data, DiarizationConfig):
            return data
        if not isinstance(data, Mapping):
            raise ConfigurationError("configuration overrides must be a mapping", stage="config")
        known = {field.name for field in dataclass_fields(cls)}
        merged: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                raise ConfigurationError(f"Unknown configuration key: {key}", stage="config")
            if value is None:
                continue
            merged[key] = value
        return cls(**merged)

    @classmethod
    def from_env(
        cls,
        prefix: str = "STREAMDIAR_",
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> DiarizationConfig:
        """Build a configuration from ``<prefix><FIELD>`` environment variables.

        Explicit keyword overrides win over the environment.
        """

        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for field in dataclass_fields(cls):
            key = f"{prefix}{field.name.upper()}"
            if key not in env:
                continue
            if field.name in _BOOL_FIELDS:
                parsed = bool_env(key, env)
                if parsed is None:
                    raise ConfigurationError(
                        f"{key} must be a boolean flag, got {env[key]!r}", stage="config"
                    )
                values[field.name] = parsed
                continue
            raw = env[key].strip()
            try:
                values[field.name] = int(raw) if field.name in _INT_FIELDS else float(raw)
            except ValueError as exc:
                raise ConfigurationError(
                    f"{key} must be numeric, got {raw!r}", stage="config", cause=exc
                ) from exc
        values.update(overrides)
        return cls.from_mapping(values)


__all__ = ["DiarizationConfig", "NUM_LOCAL_SLOTS", "NUM_POWERSET_CLASSES"]
