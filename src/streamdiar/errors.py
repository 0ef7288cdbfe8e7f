"""Error types for the streamdiar diarization engine.

Failures are grouped by how far they reach.  Calling the engine before it is
bound to inference providers raises :class:`NotInitializedError` and leaves the
session untouched.  Malformed audio (:class:`InvalidAudioError`) and provider
failures (:class:`InferenceError`) are local to a single chunk: the
orchestrator records them, skips the chunk and carries on with the next one.
Every error carries the stage it originated from and a serialisable context
payload so callers can log or surface it without unpacking the cause.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "DiarizationError",
    "NotInitializedError",
    "InvalidAudioError",
    "InferenceError",
    "ConfigurationError",
    "ProviderUnavailableError",
    "SessionStateError",
    "attach_context",
    "coerce_stage_error",
]


@dataclass(eq=False)
class DiarizationError(RuntimeError):
    """Base class for diarization failures.

    Attributes
    ----------
    message:
        Human readable description of the failure.
    stage:
        Optional stage identifier (``segmentation``, ``embedding`` ...).
    context:
        JSON serialisable dictionary with granular diagnostics.
    cause:
        Underlying exception (kept for debugging, not included in ``__str__``).
    """

    message: str
    stage: str | None = None
    context: MutableMapping[str, Any] = field(default_factory=dict)
    cause: Exception | None = None

    def __post_init__(self) -> None:
        if self.context is None:
            self.context = {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class NotInitializedError(DiarizationError):
    """Raised when the engine is used before providers are bound."""


class InvalidAudioError(DiarizationError):
    """Raised for empty or malformed audio chunks."""


class InferenceError(DiarizationError):
    """Raised when the segmentation or embedding provider fails for a chunk."""


class ConfigurationError(DiarizationError):
    """Raised when configuration validation fails."""


class ProviderUnavailableError(DiarizationError):
    """Raised when an inference provider is missing or not ready."""


class SessionStateError(DiarizationError):
    """Raised when a session operation is invalid in the current state."""


def attach_context(
    error: DiarizationError,
    context: Mapping[str, Any] | None,
) -> DiarizationError:
    """Merge ``context`` into ``error.context`` preserving existing keys."""

    if not context:
        return error
    for key, value in context.items():
        error.context.setdefault(key, value)
    return error


def coerce_stage_error(
    stage: str,
    message: str,
    *,
    context: Mapping[str, Any] | None = None,
    cause: Exception | None = None,
) -> InferenceError:
    """Create :class:`InferenceError` with a rich context payload."""

    payload: MutableMapping[str, Any] = {}
    if context:
        payload.update(context)
    if cause:
        payload.setdefault("cause", repr(cause))
    return InferenceError(message=message, stage=stage, context=payload, cause=cause)
