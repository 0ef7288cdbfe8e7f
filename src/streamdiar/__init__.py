"""
streamdiar: online speaker diarization over fixed-length audio chunks
"""

__version__ = "0.1.0"

from .diarization import (
    AudioChunk,
    DiarizationConfig,
    DiarizationResult,
    SpeakerDiarizer,
    TimedSpeakerSegment,
)
from .errors import (
    DiarizationError,
    InferenceError,
    InvalidAudioError,
    NotInitializedError,
)

__all__ = [
    "AudioChunk",
    "DiarizationConfig",
    "DiarizationError",
    "DiarizationResult",
    "InferenceError",
    "InvalidAudioError",
    "NotInitializedError",
    "SpeakerDiarizer",
    "TimedSpeakerSegment",
    "__version__",
]
