"""
Conversion of arbitrary Python values and key/value lists into telemetry values.

Conversion never raises: a misused log call should produce an odd-looking
attribute, not an exception in the caller.
"""

from __future__ import annotations

import dataclasses
import weakref
from collections.abc import Mapping, Sequence, Set
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence as SequenceT, Tuple

from opentelemetry.context import Context

from .models import (
    EMPTY,
    KeyValue,
    Value,
    bytes_value,
    bool_value,
    float64_kv,
    float64_value,
    int64_value,
    map_value,
    slice_value,
    string_value,
)

INT64_MAX = (1 << 63) - 1
INT64_MIN = -(1 << 63)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)

# Nesting beyond this depth is almost certainly a reference cycle.
_MAX_DEPTH = 64


def convert_value(v: Any) -> Value:
    """Convert ``v`` into a :class:`Value`."""
    return _convert(v, 0)


def convert_kvs(
    context: Optional[Context], keys_and_values: SequenceT[Any]
) -> Tuple[Optional[Context], List[KeyValue]]:
    """Convert a flat ``[k1, v1, k2, v2, ...]`` list into key/values.

    A value that is itself a :class:`Context` is not emitted; it replaces the
    returned context instead, so the last one wins.
    """
    if not keys_and_values:
        return context, []
    items = list(keys_and_values)
    if len(items) % 2:
        items.append(None)

    kvs: List[KeyValue] = []
    for i in range(0, len(items), 2):
        key = items[i]
        if not isinstance(key, str):
            key = _safe_str(key)
        value = items[i + 1]
        if isinstance(value, Context):
            context = value
            continue
        kvs.append(KeyValue(key, convert_value(value)))
    return context, kvs


def _convert(v: Any, depth: int) -> Value:
    if depth > _MAX_DEPTH:
        return _unhandled(v, "<max depth exceeded>")
    try:
        return _convert_unchecked(v, depth)
    except Exception as exc:
        return _unhandled(v, f"<conversion failed: {type(exc).__name__}>")


def _convert_unchecked(v: Any, depth: int) -> Value:
    # bool is an int subclass, so it must be checked first.
    if isinstance(v, bool):
        return bool_value(v)
    if isinstance(v, str):
        return string_value(str.__str__(v))
    if isinstance(v, int):
        return _convert_int(int(v))
    if isinstance(v, float):
        return float64_value(v)
    if isinstance(v, timedelta):
        return int64_value(_timedelta_nanos(v))
    if isinstance(v, complex):
        return map_value(float64_kv("r", v.real), float64_kv("i", v.imag))
    if isinstance(v, datetime):
        return _convert_int(_datetime_nanos(v))
    if isinstance(v, (bytes, bytearray, memoryview)):
        return bytes_value(bytes(v))
    if isinstance(v, BaseException):
        return string_value(str(v))
    if v is None:
        return EMPTY
    if _is_record(v):
        return string_value(_format_record(v))
    if isinstance(v, (Sequence, Set)):
        return slice_value(*(_convert(item, depth + 1) for item in v))
    if isinstance(v, Mapping):
        return map_value(
            *(KeyValue(_format_key(key), _convert(item, depth + 1)) for key, item in v.items())
        )
    if isinstance(v, weakref.ReferenceType):
        referent = v()
        if referent is None:
            return EMPTY
        return _convert(referent, depth + 1)
    return _unhandled(v, _safe_repr(v))


def _convert_int(v: int) -> Value:
    if INT64_MIN <= v <= INT64_MAX:
        return int64_value(v)
    return string_value(str(v))


def _timedelta_nanos(v: timedelta) -> int:
    return (v.days * 86_400 + v.seconds) * 1_000_000_000 + v.microseconds * 1_000


def _datetime_nanos(v: datetime) -> int:
    if v.tzinfo is None:
        # Naive datetimes are local time, as with datetime.timestamp().
        v = v.astimezone()
    return (v - _EPOCH) // _MICROSECOND * 1_000


def _is_record(v: Any) -> bool:
    if dataclasses.is_dataclass(v) and not isinstance(v, type):
        return True
    return isinstance(v, tuple) and hasattr(v, "_fields") and hasattr(v, "_asdict")


def _record_fields(v: Any) -> List[Tuple[str, Any]]:
    if dataclasses.is_dataclass(v):
        return [(f.name, getattr(v, f.name)) for f in dataclasses.fields(v)]
    return list(v._asdict().items())


def _format_record(v: Any) -> str:
    parts = [f"{name}:{_format_field(item)}" for name, item in _record_fields(v)]
    return "{" + " ".join(parts) + "}"


def _format_field(v: Any) -> str:
    if _is_record(v):
        return _format_record(v)
    return _safe_str(v)


def _format_key(key: Any) -> str:
    if isinstance(key, str):
        return key
    if _is_record(key):
        return _format_record(key)
    return _safe_str(key)


def _unhandled(v: Any, rendered: str) -> Value:
    return string_value(f"unhandled: ({type(v).__name__}) {rendered}")


def _safe_str(v: Any) -> str:
    try:
        return str(v)
    except Exception:
        return _safe_repr(v)


def _safe_repr(v: Any) -> str:
    try:
        return repr(v)
    except Exception:
        return f"<unprintable {type(v).__name__} object>"
