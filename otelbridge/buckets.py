"""
Latency boundaries and bounded sample buckets used by the tracez span processor.

Durations are integer nanoseconds, the unit of ``ReadableSpan.start_time`` and
``ReadableSpan.end_time``.
"""

from __future__ import annotations

from typing import Generic, Iterable, List, Optional, Tuple, TypeVar

NANOSECOND = 1
MICROSECOND = 1_000 * NANOSECOND
MILLISECOND = 1_000 * MICROSECOND
SECOND = 1_000 * MILLISECOND

T = TypeVar("T")


def format_duration(ns: int) -> str:
    """Render a nanosecond duration compactly, e.g. ``10µs`` or ``1.5s``."""
    if ns <= 0:
        return "0s"
    for unit, suffix in ((SECOND, "s"), (MILLISECOND, "ms"), (MICROSECOND, "µs")):
        if ns >= unit:
            return f"{ns / unit:g}{suffix}"
    return f"{ns}ns"


class LatencyBoundaries:
    """Strictly increasing boundaries ``b1 < ... < bn`` defining ``n + 1`` buckets.

    Bucket ``i`` holds durations in ``[b(i), b(i+1))`` with ``b(0) = 0`` and the
    last bucket unbounded above.
    """

    __slots__ = ("_durations",)

    def __init__(self, durations: Iterable[int]) -> None:
        values: Tuple[int, ...] = tuple(int(d) for d in durations)
        previous = 0
        for value in values:
            if value <= previous:
                raise ValueError(
                    f"latency boundaries must be positive and strictly increasing: {values}"
                )
            previous = value
        self._durations = values

    @property
    def durations(self) -> Tuple[int, ...]:
        return self._durations

    @property
    def num_buckets(self) -> int:
        return len(self._durations) + 1

    def bucket_index(self, latency: int) -> int:
        if latency < 0:
            return 0
        for i, boundary in enumerate(self._durations):
            if latency < boundary:
                return i
        return len(self._durations)

    def lower_bound(self, index: int) -> int:
        if index <= 0:
            return 0
        return self._durations[index - 1]

    def labels(self) -> List[str]:
        return [f">{format_duration(self.lower_bound(i))}" for i in range(self.num_buckets)]

    def __repr__(self) -> str:
        return f"LatencyBoundaries({[format_duration(d) for d in self._durations]})"


DEFAULT_BOUNDARIES = LatencyBoundaries(
    [
        10 * MICROSECOND,
        100 * MICROSECOND,
        MILLISECOND,
        10 * MILLISECOND,
        100 * MILLISECOND,
        SECOND,
        10 * SECOND,
        100 * SECOND,
    ]
)


class SampleBucket(Generic[T]):
    """Fixed-capacity ring of samples that keeps the most recent ``capacity`` entries.

    Not thread-safe; the span processor serializes access.
    """

    __slots__ = ("_capacity", "_slots", "_cursor", "_size", "_observed")

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError(f"capacity must not be negative, got {capacity}")
        self._capacity = capacity
        self._slots: List[Optional[T]] = [None] * capacity
        self._cursor = 0
        self._size = 0
        self._observed = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def observed(self) -> int:
        return self._observed

    def add(self, sample: T) -> None:
        self._observed += 1
        if self._capacity == 0:
            return
        self._slots[self._cursor] = sample
        self._cursor = (self._cursor + 1) % self._capacity
        if self._size < self._capacity:
            self._size += 1

    def spans(self) -> List[T]:
        """Return the retained samples, oldest first."""
        if self._size < self._capacity:
            return list(self._slots[: self._size])
        return list(self._slots[self._cursor :]) + list(self._slots[: self._cursor])

    def __len__(self) -> int:
        return self._size

    def __repr__(self) -> str:
        return f"SampleBucket(capacity={self._capacity}, len={self._size}, observed={self._observed})"
