import base64

import pytest

from otelbridge.sw8 import (
    UNKNOWN,
    Base64DecodeError,
    InsufficientFieldsError,
    InvalidSpanIDError,
    InvalidTraceIDError,
    MalformedCorrelationError,
    MalformedTimestampError,
    SW8Header,
    decode_correlation,
    decode_correlation_pair,
    decode_extension,
    decode_sw8,
    encode_correlation,
    encode_extension,
    encode_sw8,
    parent_span_id_from,
    parse_timestamp,
)

TRACE_ID = 0x0102030405060708090A0B0C0D0E0F10
SPAN_ID = 0x0102030405060708


def b64(text):
    return base64.b64encode(text.encode()).decode()


def sw8_value(trace_hex="0102030405060708090a0b0c0d0e0f10", span_hex="0102030405060708", parent="72623859790382856"):
    return "-".join(
        ["1", b64(trace_hex), b64(span_hex), parent, b64("svc"), b64("inst"), b64("/api"), b64("host:80")]
    )


def test_encode_sw8_fields():
    header = SW8Header(sampled=True, trace_id=TRACE_ID, segment_id=SPAN_ID, parent_span_id=parent_span_id_from(SPAN_ID))
    fields = encode_sw8(header).split("-")
    assert len(fields) == 8
    assert fields[0] == "1"
    assert base64.b64decode(fields[1]).decode() == "0102030405060708090a0b0c0d0e0f10"
    assert base64.b64decode(fields[2]).decode() == "0102030405060708"
    assert fields[3] == str(SPAN_ID)
    assert [base64.b64decode(f).decode() for f in fields[4:]] == [UNKNOWN] * 4


def test_encode_unsampled():
    header = SW8Header(sampled=False, trace_id=TRACE_ID, segment_id=SPAN_ID, parent_span_id=0)
    assert encode_sw8(header).startswith("0-")


def test_parent_span_id_is_non_negative():
    assert parent_span_id_from(SPAN_ID) == SPAN_ID
    assert parent_span_id_from(0xFFFFFFFFFFFFFFFF) == 1
    assert parent_span_id_from(0x8000000000000000) == 1 << 63


def test_decode_sw8():
    header = decode_sw8(sw8_value())
    assert header.sampled
    assert header.trace_id == TRACE_ID
    assert header.segment_id == SPAN_ID
    assert header.parent_span_id == 72623859790382856
    assert header.parent_service == "svc"
    assert header.parent_service_instance == "inst"
    assert header.parent_endpoint == "/api"
    assert header.target_address == "host:80"


def test_decode_sw8_bad_parent_span_id_is_zero():
    assert decode_sw8(sw8_value(parent="abc")).parent_span_id == 0


@pytest.mark.parametrize(
    "value, error",
    [
        ("invalid-format", InsufficientFieldsError),
        ("1-a-b-c-d-e-f", InsufficientFieldsError),
        (sw8_value().replace(b64("0102030405060708090a0b0c0d0e0f10"), "!!!"), Base64DecodeError),
        (sw8_value(trace_hex="0" * 32), InvalidTraceIDError),
        (sw8_value(trace_hex="0102"), InvalidTraceIDError),
        (sw8_value(trace_hex="0102030405060708090A0B0C0D0E0F10"), InvalidTraceIDError),
        (sw8_value(span_hex="0" * 16), InvalidSpanIDError),
        (sw8_value(span_hex="zz02030405060708"), InvalidSpanIDError),
    ],
)
def test_decode_sw8_errors(value, error):
    with pytest.raises(error):
        decode_sw8(value)


def test_encode_correlation_limits():
    pairs = [("a", "1"), ("b", "x" * 129), ("c", "3"), ("d", "4"), ("e", "5")]
    encoded = encode_correlation(pairs)
    assert encoded == ",".join(f"{b64(k)}:{b64(v)}" for k, v in [("a", "1"), ("c", "3"), ("d", "4")])


def test_encode_correlation_nothing_left():
    assert encode_correlation([]) is None
    assert encode_correlation([("big", "x" * 200)]) is None


def test_decode_correlation_skips_bad_pairs():
    value = ",".join([f"{b64('user.id')}:{b64('12345')}", "nocolon", f"{b64('k')}:***", f"{b64('')}:{b64('v')}"])
    assert decode_correlation(value) == [("user.id", "12345")]


def test_decode_correlation_pair_errors():
    with pytest.raises(MalformedCorrelationError):
        decode_correlation_pair("missing-separator")
    with pytest.raises(MalformedCorrelationError):
        decode_correlation_pair(f"{b64('k')}:not base64!")


def test_encode_extension():
    assert encode_extension("1", 1602743904804) == "1-1602743904804"
    assert encode_extension("0") == "0- "
    assert encode_extension("0", 0) == "0- "


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1-1602743904804", ("1", 1602743904804)),
        ("0- ", ("0", 0)),
        ("1", ("1", 0)),
        ("2-100", (None, 100)),
        ("1--5", ("1", 0)),
        ("1- 5", ("1", 0)),
        ("1-0", ("1", 0)),
        ("1-99999999999999999999", ("1", 0)),
    ],
)
def test_decode_extension(value, expected):
    assert decode_extension(value) == expected


def test_parse_timestamp_rejects_garbage():
    assert parse_timestamp("42") == 42
    for bad in ("", "-1", "+1", "1.5", " 1", "0"):
        with pytest.raises(MalformedTimestampError):
            parse_timestamp(bad)
