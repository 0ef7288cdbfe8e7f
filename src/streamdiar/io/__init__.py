"""Model runtime helpers for the ONNX-backed providers."""

from .onnx_runtime_guard import OnnxRuntimeUnavailable, ensure_onnxruntime, onnxruntime_status
from .onnx_utils import create_onnx_session, resolve_model_path

__all__ = [
    "OnnxRuntimeUnavailable",
    "create_onnx_session",
    "ensure_onnxruntime",
    "onnxruntime_status",
    "resolve_model_path",
]
