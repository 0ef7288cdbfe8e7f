"""Inference provider contracts and backends.

The engine only talks to two narrow interfaces: a segmentation provider
returning per-frame powerset scores for one padded chunk, and an embedding
provider returning one vector per local slot.  Swapping backends never
touches clustering or segment logic.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import numpy as np

from ..errors import InferenceError
from ..io.onnx_runtime_guard import OnnxRuntimeUnavailable
from ..io.onnx_utils import create_onnx_session
from .logger import logger


@runtime_checkable
class SegmentationProvider(Protocol):
    def segment(self, audio: np.ndarray) -> np.ndarray:
        """Return ``[frames, 7]`` powerset scores for a padded chunk."""
        ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    def embed(self, waveforms: np.ndarray, masks: np.ndarray) -> np.ndarray:
        """Return ``[3, D]`` embeddings for ``[3, N]`` audio and ``[3, frames]`` masks."""
        ...


def provider_ready(provider: Any) -> bool:
    """Providers may expose ``is_ready`` (attribute or method); absent means ready."""
    if provider is None:
        return False
    ready = getattr(provider, "is_ready", True)
    if callable(ready):
        ready = ready()
    return bool(ready)


class CallableSegmentationProvider:
    def __init__(self, func: Callable[[np.ndarray], np.ndarray]) -> None:
        self._func = func

    def segment(self, audio: np.ndarray) -> np.ndarray:
        return np.asarray(self._func(audio))


class CallableEmbeddingProvider:
    def __init__(self, func: Callable[[np.ndarray, np.ndarray], np.ndarray]) -> None:
        self._func = func

    def embed(self, waveforms: np.ndarray, masks: np.ndarray) -> np.ndarray:
        return np.asarray(self._func(waveforms, masks))


class _OnnxProvider:
    stage = "onnx"

    def __init__(self, model_path: str | Path, *, threads: int = 1, session: Any = None) -> None:
        self.model_path = Path(model_path)
        self.session = session
        self.input_names: list[str] = []
        self.output_name: str | None = None
        if self.session is None:
            self._load(threads)
        self._bind_io()

    def _load(self, threads: int) -> None:
        try:
            self.session = create_onnx_session(self.model_path, threads=threads)
            logger.info("%s model loaded: %s", self.stage, self.model_path)
        except (FileNotFoundError, OnnxRuntimeUnavailable) as exc:
            logger.error("%s model unavailable: %s", self.stage, exc)
            self.session = None

    def _bind_io(self) -> None:
        if self.session is None:
            return
        self.input_names = [inp.name for inp in self.session.get_inputs()]
        self.output_name = self.session.get_outputs()[0].name

    @property
    def is_ready(self) -> bool:
        return self.session is not None

    def _require_session(self) -> None:
        if self.session is None:
            raise InferenceError(
                f"{self.stage} model is not loaded",
                stage=self.stage,
                context={"model_path": str(self.model_path)},
            )

    def _run(self, feeds: dict[str, np.ndarray]) -> np.ndarray:
        outputs = self.session.run([self.output_name], feeds)
        return np.asarray(outputs[0], dtype=np.float32)


class OnnxSegmentationProvider(_OnnxProvider):
    """Powerset segmentation model taking ``[1, 1, N]`` audio."""

    stage = "segmentation"

    def segment(self, audio: np.ndarray) -> np.ndarray:
        self._require_session()
        x = np.asarray(audio, dtype=np.float32).reshape(1, 1, -1)
        scores = self._run({self.input_names[0]: x})
        while scores.ndim > 2 and scores.shape[0] == 1:
            scores = scores[0]
        return scores


class OnnxEmbeddingProvider(_OnnxProvider):
    """Masked speaker-embedding model taking ``waveform`` and ``mask`` inputs."""

    stage = "embedding"

    def _feed_names(self) -> tuple[str, str]:
        if len(self.input_names) < 2:
            raise InferenceError(
                "embedding model must expose waveform and mask inputs",
                stage=self.stage,
                context={"inputs": list(self.input_names)},
            )
        wave_name = next((n for n in self.input_names if "wav" in n.lower()), None)
        mask_name = next((n for n in self.input_names if "mask" in n.lower()), None)
        if wave_name is None or mask_name is None or wave_name == mask_name:
            wave_name, mask_name = self.input_names[0], self.input_names[1]
        return wave_name, mask_name

    def embed(self, waveforms: np.ndarray, masks: np.ndarray) -> np.ndarray:
        self._require_session()
        wave_name, mask_name = self._feed_names()
        feeds = {
            wave_name: np.asarray(waveforms, dtype=np.float32),
            mask_name: np.asarray(masks, dtype=np.float32),
        }
        return self._run(feeds)


__all__ = [
    "CallableEmbeddingProvider",
    "CallableSegmentationProvider",
    "EmbeddingProvider",
    "OnnxEmbeddingProvider",
    "OnnxSegmentationProvider",
    "SegmentationProvider",
    "provider_ready",
]
