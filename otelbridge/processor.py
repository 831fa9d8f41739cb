"""
In-process span sampling for the tracez page.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from opentelemetry.context import Context
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor
from opentelemetry.trace import StatusCode

from .buckets import DEFAULT_BOUNDARIES, LatencyBoundaries, SampleBucket

logger = logging.getLogger(__name__)

DEFAULT_LATENCY_SAMPLES = 10
DEFAULT_ERROR_SAMPLES = 5

SpanKey = Tuple[int, int]


def _span_key(span: ReadableSpan) -> SpanKey:
    span_context = span.context
    if span_context is None:
        return 0, id(span)
    return span_context.trace_id, span_context.span_id


def is_error(status_code: Optional[StatusCode]) -> bool:
    return status_code is StatusCode.ERROR


def span_latency(span: ReadableSpan) -> int:
    """Latency in nanoseconds; negative or missing timings count as zero."""
    if span.start_time is None or span.end_time is None:
        return 0
    return max(0, span.end_time - span.start_time)


@dataclass(slots=True)
class SpanMethodSummary:
    """Counts recorded for one span name."""

    active_count: int
    latency_counts: List[int]
    error_counts: Dict[StatusCode, int] = field(default_factory=dict)

    @property
    def error_total(self) -> int:
        return sum(self.error_counts.values())

    @property
    def latency_total(self) -> int:
        return sum(self.latency_counts)


class _NameEntry:
    __slots__ = (
        "active",
        "latency_buckets",
        "error_buckets",
        "latency_counts",
        "error_counts",
        "_error_capacity",
    )

    def __init__(self, boundaries: LatencyBoundaries, latency_samples: int, error_samples: int) -> None:
        self.active: Dict[SpanKey, ReadableSpan] = {}
        self.latency_buckets: List[SampleBucket[ReadableSpan]] = [
            SampleBucket(latency_samples) for _ in range(boundaries.num_buckets)
        ]
        self.error_buckets: Dict[StatusCode, SampleBucket[ReadableSpan]] = {}
        self.latency_counts: List[int] = [0] * boundaries.num_buckets
        self.error_counts: Dict[StatusCode, int] = {}
        self._error_capacity = error_samples

    def error_bucket(self, code: StatusCode) -> SampleBucket[ReadableSpan]:
        bucket = self.error_buckets.get(code)
        if bucket is None:
            bucket = SampleBucket(self._error_capacity)
            self.error_buckets[code] = bucket
        return bucket

    def summary(self) -> SpanMethodSummary:
        return SpanMethodSummary(
            active_count=len(self.active),
            latency_counts=list(self.latency_counts),
            error_counts=dict(self.error_counts),
        )


class TracezSpanProcessor(SpanProcessor):
    """Span processor that keeps per-name counts and recent samples of spans.

    Running spans are tracked until they end. Ended spans are counted and
    sampled either into an error bucket, keyed by status code, or into the
    latency bucket matching their duration. Entries are created on the first
    span with a given name and are never removed.
    """

    def __init__(
        self,
        boundaries: LatencyBoundaries = DEFAULT_BOUNDARIES,
        *,
        latency_samples: int = DEFAULT_LATENCY_SAMPLES,
        error_samples: int = DEFAULT_ERROR_SAMPLES,
    ) -> None:
        if latency_samples < 0 or error_samples < 0:
            raise ValueError(
                f"sample capacities must not be negative, got {latency_samples} and {error_samples}"
            )
        self._boundaries = boundaries
        self._latency_samples = latency_samples
        self._error_samples = error_samples
        self._entries: Dict[str, _NameEntry] = {}
        self._lock = threading.Lock()

    @property
    def boundaries(self) -> LatencyBoundaries:
        return self._boundaries

    def on_start(self, span: Span, parent_context: Optional[Context] = None) -> None:
        with self._lock:
            entry = self._get_or_create_entry(span.name)
            entry.active[_span_key(span)] = span

    def on_end(self, span: ReadableSpan) -> None:
        status_code = span.status.status_code if span.status is not None else StatusCode.UNSET
        latency = span_latency(span)
        with self._lock:
            entry = self._get_or_create_entry(span.name)
            entry.active.pop(_span_key(span), None)
            if is_error(status_code):
                entry.error_bucket(status_code).add(span)
                entry.error_counts[status_code] = entry.error_counts.get(status_code, 0) + 1
            else:
                index = self._boundaries.bucket_index(latency)
                entry.latency_buckets[index].add(span)
                entry.latency_counts[index] += 1

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True

    def span_names(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def spans_per_method(self) -> Dict[str, SpanMethodSummary]:
        with self._lock:
            return {name: entry.summary() for name, entry in self._entries.items()}

    def active_spans(self, name: str) -> List[ReadableSpan]:
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return []
            return list(entry.active.values())

    def error_spans(self, name: str) -> List[ReadableSpan]:
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return []
            spans: List[ReadableSpan] = []
            for code in sorted(entry.error_buckets, key=lambda c: c.value):
                spans.extend(entry.error_buckets[code].spans())
            return spans

    def spans_by_latency(self, name: str, index: int) -> Optional[List[ReadableSpan]]:
        """Return the samples of one latency bucket, or None if ``index`` is out of range."""
        if index < 0 or index >= self._boundaries.num_buckets:
            return None
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return []
            return entry.latency_buckets[index].spans()

    def _get_or_create_entry(self, name: str) -> _NameEntry:
        entry = self._entries.get(name)
        if entry is None:
            entry = _NameEntry(self._boundaries, self._latency_samples, self._error_samples)
            self._entries[name] = entry
            logger.debug("Tracking spans named %r", name)
        return entry
