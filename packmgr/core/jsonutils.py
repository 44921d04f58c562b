# packmgr/core/jsonutils.py
from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from dataclasses import fields, is_dataclass
from enum import Enum
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel

__all__ = ["safeJsonDumps", "tryJSONify"]

_MAX_DEPTH = 8



def _dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, allow_nan=False, separators=(",", ":"))



def safeJsonDumps(obj: object) -> str:
    """Compact JSON for log lines; values json can't encode go through tryJSONify first."""
    try:
        return _dumps(obj)
    except (TypeError, ValueError):
        return _dumps(tryJSONify(obj))



def tryJSONify(obj: Any, *, _depth: int = 0, _seen: frozenset[int] = frozenset()) -> Any:
    """
    Converts engine objects into JSON-safe values.

    Paths become strings, Mods and download items (dataclasses) and pydantic
    models become objects, exceptions {"type", "message"}. Cycles and overly
    deep nesting are replaced by a marker string.
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else repr(obj)
    if isinstance(obj, PurePath):
        return str(obj)
    if isinstance(obj, Enum):
        return tryJSONify(obj.value)
    if isinstance(obj, (bytes, bytearray)):
        return f"<{len(obj)} bytes>"
    if isinstance(obj, BaseException):
        return {"type": type(obj).__name__, "message": str(obj)}
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")

    if id(obj) in _seen:
        return f"<circular_ref {type(obj).__name__}>"
    if _depth >= _MAX_DEPTH:
        return f"<max_depth_exceeded {type(obj).__name__}>"
    seen = _seen | {id(obj)}

    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: tryJSONify(getattr(obj, f.name), _depth=_depth + 1, _seen=seen) for f in fields(obj)}
    if isinstance(obj, Mapping):
        return {str(key): tryJSONify(value, _depth=_depth + 1, _seen=seen) for key, value in obj.items()}
    if isinstance(obj, Iterable):
        return [tryJSONify(value, _depth=_depth + 1, _seen=seen) for value in obj]

    return repr(obj)
