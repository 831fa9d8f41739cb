"""
Data models used by otelbridge for representing telemetry values and log records.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from opentelemetry._logs import LogRecord as OTelLogRecord
from opentelemetry._logs import SeverityNumber
from opentelemetry.context import Context


class ValueKind(enum.Enum):
    EMPTY = "empty"
    BOOL = "bool"
    INT64 = "int64"
    FLOAT64 = "float64"
    STRING = "string"
    BYTES = "bytes"
    SLICE = "slice"
    MAP = "map"


@dataclass(frozen=True, slots=True)
class Value:
    """A telemetry value: one of a closed set of kinds.

    SLICE values hold a tuple of ``Value`` and MAP values hold a tuple of
    ``KeyValue`` so that equal values compare equal and stay immutable.
    """

    kind: ValueKind = ValueKind.EMPTY
    value: Any = None

    @property
    def is_empty(self) -> bool:
        return self.kind is ValueKind.EMPTY

    def to_python(self) -> Any:
        """Render the value as an OpenTelemetry ``AnyValue``."""
        if self.kind is ValueKind.SLICE:
            return tuple(item.to_python() for item in self.value)
        if self.kind is ValueKind.MAP:
            return {kv.key: kv.value.to_python() for kv in self.value}
        return self.value

    def __str__(self) -> str:
        if self.kind is ValueKind.EMPTY:
            return ""
        if self.kind is ValueKind.SLICE:
            return "[" + " ".join(str(item) for item in self.value) + "]"
        if self.kind is ValueKind.MAP:
            return "[" + " ".join(str(kv) for kv in self.value) + "]"
        if self.kind is ValueKind.BOOL:
            return "true" if self.value else "false"
        if self.kind is ValueKind.BYTES:
            return self.value.hex()
        return str(self.value)


@dataclass(frozen=True, slots=True)
class KeyValue:
    """A key paired with a telemetry value. Keys may repeat within a list."""

    key: str
    value: Value = field(default_factory=Value)

    def __str__(self) -> str:
        return f"{self.key}={self.value}"


EMPTY = Value()


def empty_value() -> Value:
    return EMPTY


def bool_value(v: bool) -> Value:
    return Value(ValueKind.BOOL, bool(v))


def int64_value(v: int) -> Value:
    return Value(ValueKind.INT64, int(v))


def float64_value(v: float) -> Value:
    return Value(ValueKind.FLOAT64, float(v))


def string_value(v: str) -> Value:
    return Value(ValueKind.STRING, v)


def bytes_value(v: bytes) -> Value:
    return Value(ValueKind.BYTES, bytes(v))


def slice_value(*values: Value) -> Value:
    return Value(ValueKind.SLICE, tuple(values))


def map_value(*kvs: KeyValue) -> Value:
    return Value(ValueKind.MAP, tuple(kvs))


def empty_kv(key: str) -> KeyValue:
    return KeyValue(key, EMPTY)


def bool_kv(key: str, v: bool) -> KeyValue:
    return KeyValue(key, bool_value(v))


def int64_kv(key: str, v: int) -> KeyValue:
    return KeyValue(key, int64_value(v))


def float64_kv(key: str, v: float) -> KeyValue:
    return KeyValue(key, float64_value(v))


def string_kv(key: str, v: str) -> KeyValue:
    return KeyValue(key, string_value(v))


def bytes_kv(key: str, v: bytes) -> KeyValue:
    return KeyValue(key, bytes_value(v))


def slice_kv(key: str, *values: Value) -> KeyValue:
    return KeyValue(key, slice_value(*values))


def map_kv(key: str, *kvs: KeyValue) -> KeyValue:
    return KeyValue(key, map_value(*kvs))


@dataclass(slots=True)
class LogRecord:
    """A log record produced by the bridge, before it is handed to a logger."""

    body: Value
    severity: SeverityNumber
    attributes: List[KeyValue] = field(default_factory=list)
    context: Optional[Context] = None
    timestamp: int = field(default_factory=time.time_ns)

    def attribute_dict(self) -> Dict[str, Any]:
        # Duplicate keys collapse here; the last occurrence wins.
        return {kv.key: kv.value.to_python() for kv in self.attributes}

    def to_otel(self) -> OTelLogRecord:
        # The API record takes trace and span ids from the current span in ``context``.
        return OTelLogRecord(
            timestamp=self.timestamp,
            observed_timestamp=self.timestamp,
            context=self.context,
            severity_number=self.severity,
            body=self.body.to_python(),
            attributes=self.attribute_dict(),
        )
