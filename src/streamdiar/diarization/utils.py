from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Any


def bool_env(name: str, environ: Mapping[str, str] | None = None) -> bool | None:
    env = os.environ if environ is None else environ
    val = env.get(name)
    if val is None:
        return None
    norm = val.strip().lower()
    if norm in {"1", "true", "yes", "on"}:
        return True
    if norm in {"0", "false", "no", "off"}:
        return False
    return None


def round_floats(values: Any, ndigits: int = 6) -> Any:
    if isinstance(values, float):
        return round(values, ndigits)
    if isinstance(values, dict):
        return {key: round_floats(value, ndigits) for key, value in values.items()}
    if isinstance(values, (list, tuple)):
        return [round_floats(value, ndigits) for value in values]
    return values


__all__ = ["bool_env", "round_floats"]
