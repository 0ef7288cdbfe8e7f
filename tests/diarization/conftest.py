from __future__ import annotations

from collections.abc import Callable

import numpy as np
import pytest
from _helpers import SAMPLE_RATE

from streamdiar.diarization import DiarizationConfig


@pytest.fixture
def config() -> DiarizationConfig:
    return DiarizationConfig(sample_rate=SAMPLE_RATE)


@pytest.fixture
def chunk_audio() -> Callable[[float], np.ndarray]:
    def _make(seconds: float = 10.0) -> np.ndarray:
        rng = np.random.default_rng(0)
        return (0.1 * rng.standard_normal(int(seconds * SAMPLE_RATE))).astype(np.float32)

    return _make
