import pytest
from opentelemetry import baggage, trace
from opentelemetry.context import Context

from otelbridge.propagator import (
    SkyWalkingPropagator,
    timestamp_from,
    tracing_mode_from,
    with_timestamp,
    with_tracing_mode,
)
from otelbridge.sw8 import SW8_CORRELATION_HEADER, SW8_EXTENSION_HEADER, SW8_HEADER

TRACE_ID = 0x0102030405060708090A0B0C0D0E0F10
SPAN_ID = 0x0102030405060708


@pytest.fixture
def propagator():
    return SkyWalkingPropagator()


def _span_context(sampled=True):
    flags = trace.TraceFlags.SAMPLED if sampled else trace.TraceFlags.DEFAULT
    return trace.SpanContext(
        trace_id=TRACE_ID,
        span_id=SPAN_ID,
        is_remote=False,
        trace_flags=trace.TraceFlags(flags),
    )


def _context(sampled=True):
    return trace.set_span_in_context(trace.NonRecordingSpan(_span_context(sampled)), Context())


def test_context_helpers():
    ctx = Context()
    assert tracing_mode_from(ctx) == "0"
    assert timestamp_from(ctx) == 0

    ctx = with_timestamp(1602743904804, with_tracing_mode("1", ctx))
    assert tracing_mode_from(ctx) == "1"
    assert timestamp_from(ctx) == 1602743904804


def test_context_helpers_reject_bad_values():
    with pytest.raises(ValueError):
        with_tracing_mode("2", Context())
    with pytest.raises(ValueError):
        with_timestamp(-1, Context())


def test_fields(propagator):
    assert propagator.fields == {"sw8", "sw8-correlation", "sw8-x"}


def test_round_trip(propagator):
    ctx = _context()
    ctx = with_tracing_mode("1", ctx)
    ctx = with_timestamp(1602743904804, ctx)
    ctx = baggage.set_baggage("user.id", "12345", ctx)
    ctx = baggage.set_baggage("service.name", "test-service", ctx)

    carrier = {}
    propagator.inject(carrier, ctx)

    assert carrier[SW8_HEADER].startswith("1-")
    assert len(carrier[SW8_HEADER].split("-")) == 8
    assert carrier[SW8_EXTENSION_HEADER] == "1-1602743904804"
    assert len(carrier[SW8_CORRELATION_HEADER].split(",")) == 2

    extracted = propagator.extract(carrier, Context())
    span_context = trace.get_current_span(extracted).get_span_context()
    assert span_context.trace_id == TRACE_ID
    assert span_context.span_id == SPAN_ID
    assert span_context.trace_flags.sampled
    assert span_context.is_remote
    assert baggage.get_all(extracted) == {"user.id": "12345", "service.name": "test-service"}
    assert tracing_mode_from(extracted) == "1"
    assert timestamp_from(extracted) == 1602743904804


def test_inject_without_extras(propagator):
    carrier = {}
    propagator.inject(carrier, _context(sampled=False))
    assert carrier[SW8_HEADER].startswith("0-")
    assert SW8_CORRELATION_HEADER not in carrier
    assert carrier[SW8_EXTENSION_HEADER] == "0- "


def test_inject_invalid_span_context_writes_nothing(propagator):
    carrier = {}
    propagator.inject(carrier, Context())
    assert carrier == {}


def test_extract_invalid_sw8_returns_same_context(propagator):
    ctx = Context()
    extracted = propagator.extract({SW8_HEADER: "invalid-format"}, ctx)
    assert extracted is ctx
    assert baggage.get_all(extracted) == {}
    assert not trace.get_current_span(extracted).get_span_context().is_valid


def test_extract_missing_sw8_ignores_other_headers(propagator):
    ctx = Context()
    carrier = {SW8_EXTENSION_HEADER: "1-100"}
    assert propagator.extract(carrier, ctx) is ctx


def test_extract_invalid_sw8_still_reads_extension(propagator):
    extracted = propagator.extract({SW8_HEADER: "invalid-format", SW8_EXTENSION_HEADER: "1-100"}, Context())
    assert not trace.get_current_span(extracted).get_span_context().is_valid
    assert tracing_mode_from(extracted) == "1"
    assert timestamp_from(extracted) == 100


def test_extract_uses_first_header_value(propagator):
    source = {}
    propagator.inject(source, _context())
    carrier = {key: [value, "garbage"] for key, value in source.items()}
    extracted = propagator.extract(carrier, Context())
    assert trace.get_current_span(extracted).get_span_context().trace_id == TRACE_ID
