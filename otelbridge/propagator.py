"""
SkyWalking v3 propagator for OpenTelemetry.

Service metadata in ``sw8`` is always written as ``unknown``: the propagator is
stateless and does not know which service it runs in.
"""

from __future__ import annotations

import logging
from typing import Optional, Set

from opentelemetry import baggage, trace
from opentelemetry.context import Context, create_key, get_current, get_value, set_value
from opentelemetry.propagators.textmap import (
    CarrierT,
    Getter,
    Setter,
    TextMapPropagator,
    default_getter,
    default_setter,
)

from .sw8 import (
    SW8_CORRELATION_HEADER,
    SW8_EXTENSION_HEADER,
    SW8_HEADER,
    TRACING_MODE_NORMAL,
    TRACING_MODES,
    SW8Error,
    SW8Header,
    decode_correlation,
    decode_extension,
    decode_sw8,
    encode_correlation,
    encode_extension,
    encode_sw8,
    parent_span_id_from,
)

logger = logging.getLogger(__name__)

_TRACING_MODE_KEY = create_key("skywalking-tracing-mode")
_TIMESTAMP_KEY = create_key("skywalking-timestamp")


def with_tracing_mode(mode: str, context: Optional[Context] = None) -> Context:
    """Return a context carrying the SkyWalking tracing mode ("0" or "1")."""
    if mode not in TRACING_MODES:
        raise ValueError(f"tracing mode must be one of {sorted(TRACING_MODES)}, got {mode!r}")
    return set_value(_TRACING_MODE_KEY, mode, context)


def tracing_mode_from(context: Optional[Context] = None) -> str:
    mode = get_value(_TRACING_MODE_KEY, context)
    return mode if mode is not None else TRACING_MODE_NORMAL


def with_timestamp(timestamp_ms: int, context: Optional[Context] = None) -> Context:
    """Return a context carrying the sw8-x timestamp in milliseconds since the epoch."""
    if timestamp_ms < 0:
        raise ValueError(f"timestamp must not be negative, got {timestamp_ms}")
    return set_value(_TIMESTAMP_KEY, int(timestamp_ms), context)


def timestamp_from(context: Optional[Context] = None) -> int:
    timestamp = get_value(_TIMESTAMP_KEY, context)
    return timestamp if timestamp is not None else 0


def _first(values: Optional[list]) -> str:
    if not values:
        return ""
    return values[0] or ""


class SkyWalkingPropagator(TextMapPropagator):
    """Propagates trace context, baggage and extension values in SkyWalking v3 headers."""

    def inject(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        setter: Setter[CarrierT] = default_setter,
    ) -> None:
        span_context = trace.get_current_span(context).get_span_context()
        if not span_context.is_valid:
            return

        header = SW8Header(
            sampled=span_context.trace_flags.sampled,
            trace_id=span_context.trace_id,
            segment_id=span_context.span_id,
            parent_span_id=parent_span_id_from(span_context.span_id),
        )
        setter.set(carrier, SW8_HEADER, encode_sw8(header))

        members = baggage.get_all(context)
        correlation = encode_correlation((key, str(value)) for key, value in members.items())
        if correlation is not None:
            setter.set(carrier, SW8_CORRELATION_HEADER, correlation)

        setter.set(
            carrier,
            SW8_EXTENSION_HEADER,
            encode_extension(tracing_mode_from(context), timestamp_from(context)),
        )

    def extract(
        self,
        carrier: CarrierT,
        context: Optional[Context] = None,
        getter: Getter[CarrierT] = default_getter,
    ) -> Context:
        if context is None:
            context = get_current()

        sw8_value = _first(getter.get(carrier, SW8_HEADER))
        if not sw8_value:
            return context

        try:
            header = decode_sw8(sw8_value)
        except SW8Error as exc:
            logger.debug("Dropping span context from sw8 header: %s", exc)
        else:
            span_context = trace.SpanContext(
                trace_id=header.trace_id,
                span_id=header.segment_id,
                is_remote=True,
                trace_flags=trace.TraceFlags(
                    trace.TraceFlags.SAMPLED if header.sampled else trace.TraceFlags.DEFAULT
                ),
            )
            context = trace.set_span_in_context(trace.NonRecordingSpan(span_context), context)

        correlation = _first(getter.get(carrier, SW8_CORRELATION_HEADER))
        if correlation:
            for key, value in decode_correlation(correlation):
                context = baggage.set_baggage(key, value, context)

        extension = _first(getter.get(carrier, SW8_EXTENSION_HEADER))
        if extension:
            mode, timestamp = decode_extension(extension)
            if mode is not None:
                context = with_tracing_mode(mode, context)
            if timestamp:
                context = with_timestamp(timestamp, context)

        return context

    @property
    def fields(self) -> Set[str]:
        return {SW8_HEADER, SW8_CORRELATION_HEADER, SW8_EXTENSION_HEADER}
