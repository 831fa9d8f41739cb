"""
Encoding and decoding of the SkyWalking v3 ``sw8``, ``sw8-correlation`` and ``sw8-x`` headers.

sw8:             {sample}-{trace-id}-{segment-id}-{parent-span-id}-{service}-{instance}-{endpoint}-{address}
sw8-correlation: base64(key):base64(value),base64(key):base64(value)
sw8-x:           {tracing-mode}-{timestamp}   (timestamp may be a single space placeholder)
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

SW8_HEADER = "sw8"
SW8_CORRELATION_HEADER = "sw8-correlation"
SW8_EXTENSION_HEADER = "sw8-x"

FIELD_SEPARATOR = "-"
CORRELATION_SEPARATOR = ","
CORRELATION_KV_SEPARATOR = ":"

SW8_FIELDS = 8
SAMPLED = "1"
NOT_SAMPLED = "0"
UNKNOWN = "unknown"

TRACING_MODE_NORMAL = "0"
TRACING_MODE_SKIP_ANALYSIS = "1"
TRACING_MODES = frozenset({TRACING_MODE_NORMAL, TRACING_MODE_SKIP_ANALYSIS})
TIMESTAMP_PLACEHOLDER = " "

MAX_CORRELATION_KEYS = 3
MAX_CORRELATION_VALUE_BYTES = 128

_INT64_MAX = (1 << 63) - 1
_TRACE_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_SPAN_ID_RE = re.compile(r"^[0-9a-f]{16}$")
_TIMESTAMP_RE = re.compile(r"^[0-9]+$")


class SW8Error(ValueError):
    """Base class for SkyWalking header parsing errors."""


class InsufficientFieldsError(SW8Error):
    pass


class Base64DecodeError(SW8Error):
    pass


class InvalidTraceIDError(SW8Error):
    pass


class InvalidSpanIDError(SW8Error):
    pass


class MalformedCorrelationError(SW8Error):
    pass


class MalformedTimestampError(SW8Error):
    pass


@dataclass(frozen=True)
class SW8Header:
    """The decoded contents of an ``sw8`` header."""

    sampled: bool
    trace_id: int
    segment_id: int
    parent_span_id: int
    parent_service: str = UNKNOWN
    parent_service_instance: str = UNKNOWN
    parent_endpoint: str = UNKNOWN
    target_address: str = UNKNOWN


def b64encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def b64decode(field: str) -> str:
    try:
        return base64.b64decode(field.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError) as exc:
        raise Base64DecodeError(f"failed to decode base64 field {field!r}") from exc


def parent_span_id_from(span_id: int) -> int:
    """Interpret the low 64 bits of ``span_id`` as a signed integer, made non-negative."""
    value = span_id & 0xFFFFFFFFFFFFFFFF
    if value > _INT64_MAX:
        value -= 1 << 64
    return abs(value)


def encode_sw8(header: SW8Header) -> str:
    return FIELD_SEPARATOR.join(
        [
            SAMPLED if header.sampled else NOT_SAMPLED,
            b64encode(format(header.trace_id, "032x")),
            b64encode(format(header.segment_id, "016x")),
            str(header.parent_span_id),
            b64encode(header.parent_service or UNKNOWN),
            b64encode(header.parent_service_instance or UNKNOWN),
            b64encode(header.parent_endpoint or UNKNOWN),
            b64encode(header.target_address or UNKNOWN),
        ]
    )


def decode_sw8(value: str) -> SW8Header:
    fields = value.split(FIELD_SEPARATOR)
    if len(fields) < SW8_FIELDS:
        raise InsufficientFieldsError(
            f"sw8 header has {len(fields)} fields, expected {SW8_FIELDS}"
        )

    trace_hex = b64decode(fields[1])
    if not _TRACE_ID_RE.match(trace_hex) or int(trace_hex, 16) == 0:
        raise InvalidTraceIDError(f"invalid trace id {trace_hex!r} in sw8 header")

    segment_hex = b64decode(fields[2])
    if not _SPAN_ID_RE.match(segment_hex) or int(segment_hex, 16) == 0:
        raise InvalidSpanIDError(f"invalid span id {segment_hex!r} in sw8 header")

    try:
        parent_span_id = int(fields[3])
    except ValueError:
        parent_span_id = 0

    return SW8Header(
        sampled=fields[0] == SAMPLED,
        trace_id=int(trace_hex, 16),
        segment_id=int(segment_hex, 16),
        parent_span_id=parent_span_id,
        parent_service=b64decode(fields[4]),
        parent_service_instance=b64decode(fields[5]),
        parent_endpoint=b64decode(fields[6]),
        target_address=b64decode(fields[7]),
    )


def encode_correlation(pairs: Iterable[Tuple[str, str]]) -> Optional[str]:
    """Encode up to three pairs; values over 128 bytes are skipped.

    Returns None when no pair survives the limits.
    """
    encoded: List[str] = []
    for key, value in pairs:
        if len(encoded) >= MAX_CORRELATION_KEYS:
            break
        if len(value.encode("utf-8")) > MAX_CORRELATION_VALUE_BYTES:
            logger.debug(
                "Skipping sw8-correlation value for %r: longer than %d bytes",
                key,
                MAX_CORRELATION_VALUE_BYTES,
            )
            continue
        encoded.append(b64encode(key) + CORRELATION_KV_SEPARATOR + b64encode(value))
    if not encoded:
        return None
    return CORRELATION_SEPARATOR.join(encoded)


def decode_correlation_pair(pair: str) -> Tuple[str, str]:
    key, sep, value = pair.partition(CORRELATION_KV_SEPARATOR)
    if not sep:
        raise MalformedCorrelationError(f"missing {CORRELATION_KV_SEPARATOR!r} in {pair!r}")
    try:
        decoded_key = b64decode(key)
        decoded_value = b64decode(value)
    except Base64DecodeError as exc:
        raise MalformedCorrelationError(f"invalid base64 in correlation pair {pair!r}") from exc
    if not decoded_key:
        raise MalformedCorrelationError(f"empty key in correlation pair {pair!r}")
    return decoded_key, decoded_value


def decode_correlation(value: str) -> List[Tuple[str, str]]:
    """Decode the well-formed pairs of a correlation header, skipping the rest."""
    pairs: List[Tuple[str, str]] = []
    for raw in value.split(CORRELATION_SEPARATOR):
        raw = raw.strip()
        if not raw:
            continue
        try:
            pairs.append(decode_correlation_pair(raw))
        except MalformedCorrelationError as exc:
            logger.debug("Skipping sw8-correlation pair: %s", exc)
    return pairs


def encode_extension(tracing_mode: str, timestamp: int = 0) -> str:
    if timestamp > 0:
        return f"{tracing_mode}{FIELD_SEPARATOR}{timestamp}"
    return f"{tracing_mode}{FIELD_SEPARATOR}{TIMESTAMP_PLACEHOLDER}"


def parse_timestamp(field: str) -> int:
    if not _TIMESTAMP_RE.match(field):
        raise MalformedTimestampError(f"invalid sw8-x timestamp {field!r}")
    timestamp = int(field)
    if timestamp == 0 or timestamp > _INT64_MAX:
        raise MalformedTimestampError(f"sw8-x timestamp {field!r} out of range")
    return timestamp


def decode_extension(value: str) -> Tuple[Optional[str], int]:
    """Return ``(tracing_mode, timestamp)``; unusable parts come back as None and 0."""
    fields = value.split(FIELD_SEPARATOR)
    mode: Optional[str] = fields[0] if fields[0] in TRACING_MODES else None
    if mode is None:
        logger.debug("Ignoring sw8-x tracing mode %r", fields[0])

    timestamp = 0
    if len(fields) > 1 and fields[1] != TIMESTAMP_PLACEHOLDER:
        try:
            timestamp = parse_timestamp(fields[1])
        except MalformedTimestampError as exc:
            logger.debug("Ignoring sw8-x timestamp: %s", exc)
    return mode, timestamp
