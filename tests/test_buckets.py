import pytest

from otelbridge.buckets import (
    DEFAULT_BOUNDARIES,
    MICROSECOND,
    MILLISECOND,
    SECOND,
    LatencyBoundaries,
    SampleBucket,
    format_duration,
)


def test_default_boundaries():
    assert DEFAULT_BOUNDARIES.num_buckets == 9
    assert DEFAULT_BOUNDARIES.durations[0] == 10 * MICROSECOND
    assert DEFAULT_BOUNDARIES.durations[-1] == 100 * SECOND
    assert DEFAULT_BOUNDARIES.labels() == [
        ">0s", ">10µs", ">100µs", ">1ms", ">10ms", ">100ms", ">1s", ">10s", ">100s",
    ]


@pytest.mark.parametrize(
    "latency, index",
    [
        (-5, 0),
        (0, 0),
        (10 * MICROSECOND - 1, 0),
        (10 * MICROSECOND, 1),
        (MILLISECOND, 3),
        (5 * SECOND, 6),
        (100 * SECOND, 8),
        (10_000 * SECOND, 8),
    ],
)
def test_bucket_index(latency, index):
    assert DEFAULT_BOUNDARIES.bucket_index(latency) == index


def test_lower_bound():
    assert DEFAULT_BOUNDARIES.lower_bound(0) == 0
    assert DEFAULT_BOUNDARIES.lower_bound(1) == 10 * MICROSECOND
    assert DEFAULT_BOUNDARIES.lower_bound(8) == 100 * SECOND


@pytest.mark.parametrize("durations", [[0], [5, 5], [10, 5], [-1, 10]])
def test_boundaries_must_be_positive_and_increasing(durations):
    with pytest.raises(ValueError):
        LatencyBoundaries(durations)


def test_empty_boundaries_have_one_bucket():
    boundaries = LatencyBoundaries([])
    assert boundaries.num_buckets == 1
    assert boundaries.bucket_index(123) == 0


def test_format_duration():
    assert format_duration(0) == "0s"
    assert format_duration(500) == "500ns"
    assert format_duration(1500 * MILLISECOND) == "1.5s"


def test_sample_bucket_keeps_most_recent():
    bucket = SampleBucket(3)
    for i in range(5):
        bucket.add(i)
    assert bucket.spans() == [2, 3, 4]
    assert len(bucket) == 3
    assert bucket.observed == 5


def test_sample_bucket_partially_filled():
    bucket = SampleBucket(4)
    bucket.add("a")
    bucket.add("b")
    assert bucket.spans() == ["a", "b"]
    assert len(bucket) == 2


def test_sample_bucket_returns_copies():
    bucket = SampleBucket(2)
    bucket.add(1)
    snapshot = bucket.spans()
    snapshot.append(99)
    assert bucket.spans() == [1]


def test_zero_capacity_bucket_counts_but_keeps_nothing():
    bucket = SampleBucket(0)
    bucket.add(1)
    assert bucket.spans() == []
    assert bucket.observed == 1


def test_negative_capacity_is_rejected():
    with pytest.raises(ValueError):
        SampleBucket(-1)
