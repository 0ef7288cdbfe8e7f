"""Single guarded import of :mod:`onnxruntime`.

ONNX-backed providers must be constructible on machines where the native
extension is missing or broken; they report themselves as not ready instead.
The first import attempt is cached together with its failure.
"""

from __future__ import annotations

import importlib
import logging
import os
import sys
from dataclasses import dataclass
from types import ModuleType

logger = logging.getLogger(__name__)


class OnnxRuntimeUnavailable(RuntimeError):
    """Raised when an ONNX session cannot be created."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


@dataclass(frozen=True)
class RuntimeStatus:
    module: ModuleType | None
    error: Exception | None = None

    @property
    def available(self) -> bool:
        return self.module is not None

    def describe(self) -> str:
        if self.available:
            return f"onnxruntime {getattr(self.module, '__version__', '?')}"
        parts = [str(self.error) if self.error else "onnxruntime import failed"]
        if sys.platform.startswith("win"):
            parts.append("the Microsoft Visual C++ redistributable may be missing")
        model_dir = os.environ.get("STREAMDIAR_MODEL_DIR")
        if model_dir:
            parts.append(f"models expected under STREAMDIAR_MODEL_DIR={model_dir}")
        parts.append("ONNX providers stay not ready")
        return "; ".join(parts)


_STATUS: RuntimeStatus | None = None


def onnxruntime_status(force_reload: bool = False) -> RuntimeStatus:
    global _STATUS
    if _STATUS is None or force_reload:
        try:
            _STATUS = RuntimeStatus(importlib.import_module("onnxruntime"))
        except Exception as exc:  # pragma: no cover - platform dependent
            logger.warning("onnxruntime import failed: %s", exc)
            _STATUS = RuntimeStatus(None, exc)
    return _STATUS


def ensure_onnxruntime() -> ModuleType:
    """Return the imported module or raise :class:`OnnxRuntimeUnavailable`."""
    status = onnxruntime_status()
    if status.module is None:
        raise OnnxRuntimeUnavailable(status.describe(), cause=status.error)
    return status.module


__all__ = ["OnnxRuntimeUnavailable", "RuntimeStatus", "ensure_onnxruntime", "onnxruntime_status"]
