"""Utilities for locating and loading ONNX Runtime models."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .onnx_runtime_guard import OnnxRuntimeUnavailable, ensure_onnxruntime

if TYPE_CHECKING:  # pragma: no cover - typing only
    from onnxruntime import InferenceSession as OrtInferenceSession
else:  # pragma: no cover - runtime safe fallback
    OrtInferenceSession = Any  # type: ignore[misc,assignment]

logger = logging.getLogger(__name__)


def resolve_model_path(model_path: str | Path) -> Path:
    """Resolve ``model_path`` directly or relative to ``STREAMDIAR_MODEL_DIR``."""

    path = Path(model_path)
    if path.exists() or path.is_absolute():
        return path
    model_dir = os.getenv("STREAMDIAR_MODEL_DIR")
    if model_dir:
        candidate = Path(model_dir) / path
        if candidate.exists():
            return candidate
    return path


def create_onnx_session(
    model_path: str | Path, *, cpu_only: bool = True, threads: int = 1
) -> OrtInferenceSession:
    """Create an ONNX Runtime session with consistent CPU behaviour."""
    path = resolve_model_path(model_path)
    if not path.exists():
        raise FileNotFoundError(f"ONNX model not found: {path}")
    ort = ensure_onnxruntime()
    opts = ort.SessionOptions()
    if threads:
        opts.intra_op_num_threads = threads
        opts.inter_op_num_threads = threads
    try:
        opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    except AttributeError:
        pass
    providers = ["CPUExecutionProvider"] if cpu_only else ort.get_available_providers()
    try:
        return ort.InferenceSession(str(path), providers=providers, sess_options=opts)
    except Exception as exc:  # pragma: no cover - runtime dependent
        raise OnnxRuntimeUnavailable(
            f"Failed to initialize ONNX Runtime session for {path}: {exc}",
            cause=exc,
        ) from exc


__all__ = ["create_onnx_session", "resolve_model_path"]
