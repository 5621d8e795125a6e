"""JSON serialization that never raises.

Log contexts come from arbitrary call sites, so anything can show up in
them: cycles, callables, sets, bytes, huge integers. Everything is turned
into a JSON-compatible structure first and only then dumped.
"""

import dataclasses
import datetime
import enum
import json
from collections.abc import Mapping
from typing import Any

CIRCULAR = "[Circular Reference]"
TRUNCATED = "...[truncated]"
DEFAULT_MAX_LENGTH = 4000

# Integers outside this range lose precision in JavaScript consumers.
_MAX_SAFE_INTEGER = 2**53 - 1
_MAX_REPR = 200


def to_jsonable(value: Any) -> Any:
    """Convert an arbitrary value into something json.dumps accepts.

    Args:
        value: Any Python object.

    Returns:
        A structure made only of dict, list, str, int, float, bool and None.
    """
    return _convert(value, set())


def _convert(value: Any, seen: set[int]) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, enum.Enum):
        return _convert(value.value, seen)
    if isinstance(value, int):
        if abs(value) > _MAX_SAFE_INTEGER:
            return str(value)
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return str(value)
        return value
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return f"[Bytes: {len(value)}]"
    if callable(value) and not dataclasses.is_dataclass(value):
        return f"[Function: {getattr(value, '__qualname__', type(value).__name__)}]"

    if id(value) in seen:
        return CIRCULAR
    inner = seen | {id(value)}

    if isinstance(value, Mapping):
        return {str(k): _convert(v, inner) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_convert(item, inner) for item in value]
    if isinstance(value, BaseException):
        return {"name": type(value).__name__, "message": str(value)}
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: _convert(getattr(value, f.name), inner)
            for f in dataclasses.fields(value)
        }
    try:
        text = repr(value)
    except Exception:
        text = f"<{type(value).__name__}>"
    return text[:_MAX_REPR]


def safe_dumps(value: Any, max_length: int | None = DEFAULT_MAX_LENGTH) -> str:
    """Serialize any value to JSON text without raising.

    Args:
        value: Any Python object.
        max_length: Character budget; longer output is cut and suffixed
            with "...[truncated]". None disables truncation.

    Returns:
        JSON text (possibly truncated).
    """
    try:
        text = json.dumps(to_jsonable(value), ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        text = json.dumps(f"[Serialization Error: {exc}]")
    if max_length is not None and len(text) > max_length:
        return text[:max_length] + TRUNCATED
    return text
