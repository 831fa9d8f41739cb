"""
HTTP page that renders the state of a ``TracezSpanProcessor``.

Query parameters:

- ``zspanname``: the span name to show samples for.
- ``ztype``: ``0`` running spans, ``1`` latency samples, ``2`` error samples.
- ``zlatencybucket``: restrict latency samples to one bucket.
"""

from __future__ import annotations

import html
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import parse_qsl, quote

from aiohttp import web
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.trace import format_span_id, format_trace_id

from .buckets import SECOND
from .processor import SpanMethodSummary, TracezSpanProcessor, span_latency

logger = logging.getLogger(__name__)

DEFAULT_PATH = "/tracez"

SPAN_TYPE_RUNNING = 0
SPAN_TYPE_LATENCY = 1
SPAN_TYPE_ERROR = 2

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")

_STYLE = """
body { font-family: sans-serif; margin: 1em 2em; }
table { border-collapse: collapse; margin-bottom: 1.5em; }
th, td { border: 1px solid #ccc; padding: 2px 8px; text-align: left; }
th { background: #eee; }
td.num { text-align: right; }
td.mono { font-family: monospace; }
"""


class QueryParseError(ValueError):
    """Raised when a query string cannot be decoded."""


def parse_query(raw_query: str) -> Dict[str, str]:
    """Decode a raw query string, keeping the first value of each key.

    Invalid percent escapes and non UTF-8 data raise :class:`QueryParseError`.
    """
    if not raw_query:
        return {}
    match = _BAD_ESCAPE.search(raw_query)
    if match:
        raise QueryParseError(f"invalid percent escape at offset {match.start()}")
    try:
        pairs = parse_qsl(raw_query, keep_blank_values=True, errors="strict")
    except (UnicodeDecodeError, ValueError) as exc:
        raise QueryParseError(str(exc)) from exc
    query: Dict[str, str] = {}
    for key, value in pairs:
        query.setdefault(key, value)
    return query


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _format_time(ns: Optional[int]) -> str:
    if ns is None:
        return ""
    moment = datetime.fromtimestamp(ns / SECOND, tz=timezone.utc)
    return moment.strftime("%Y/%m/%d-%H:%M:%S.%f")


def _format_seconds(ns: int) -> str:
    return f"{ns / SECOND:.6f}"


def _link(label: object, **params: object) -> str:
    query = "&amp;".join(f"{key}={html.escape(quote(str(value), safe=''))}" for key, value in params.items())
    return f'<a href="?{query}">{html.escape(str(label))}</a>'


@dataclass
class TracezQuery:
    span_name: Optional[str] = None
    span_type: Optional[int] = None
    latency_bucket: Optional[int] = None

    @classmethod
    def from_params(cls, params: Dict[str, str]) -> "TracezQuery":
        return cls(
            span_name=params.get("zspanname") or None,
            span_type=_parse_int(params.get("ztype")),
            latency_bucket=_parse_int(params.get("zlatencybucket")),
        )


class TracezHandler:
    """aiohttp handler serving the tracez page for a span processor."""

    def __init__(self, processor: TracezSpanProcessor) -> None:
        self._processor = processor

    async def handle(self, request: web.Request) -> web.Response:
        try:
            params = parse_query(request.rel_url.raw_query_string)
        except QueryParseError as exc:
            logger.debug("Rejecting tracez query %r: %s", request.rel_url.raw_query_string, exc)
            return web.Response(status=400, text=f"invalid query: {exc}\n")
        body = self.render(TracezQuery.from_params(params))
        return web.Response(text=body, content_type="text/html", charset="utf-8")

    def render(self, query: TracezQuery) -> str:
        summaries = self._processor.spans_per_method()
        parts: List[str] = [
            "<!DOCTYPE html>",
            "<html><head><meta charset=\"utf-8\"><title>tracez</title>",
            f"<style>{_STYLE}</style></head><body>",
            "<h1>tracez</h1>",
            self._render_summary(summaries),
        ]
        if query.span_name:
            parts.append(self._render_span_name(query, summaries.get(query.span_name)))
        parts.append("</body></html>")
        return "\n".join(parts)

    def _render_summary(self, summaries: Dict[str, SpanMethodSummary]) -> str:
        labels = self._processor.boundaries.labels()
        rows: List[str] = [
            "<table>",
            "<tr><th>Span Name</th><th>Running</th>"
            + "".join(f"<th>{html.escape(label)}</th>" for label in labels)
            + "<th>Errors</th></tr>",
        ]
        if not summaries:
            rows.append(f'<tr><td colspan="{len(labels) + 3}">No spans recorded.</td></tr>')
        for name in sorted(summaries):
            summary = summaries[name]
            cells = [
                f"<td>{_link(name, zspanname=name)}</td>",
                self._count_cell(summary.active_count, name, SPAN_TYPE_RUNNING),
            ]
            for index, count in enumerate(summary.latency_counts):
                cells.append(self._count_cell(count, name, SPAN_TYPE_LATENCY, index))
            cells.append(self._count_cell(summary.error_total, name, SPAN_TYPE_ERROR))
            rows.append("<tr>" + "".join(cells) + "</tr>")
        rows.append("</table>")
        return "\n".join(rows)

    @staticmethod
    def _count_cell(count: int, name: str, span_type: int, bucket: Optional[int] = None) -> str:
        if not count:
            return '<td class="num">0</td>'
        params: Dict[str, object] = {"zspanname": name, "ztype": span_type}
        if bucket is not None:
            params["zlatencybucket"] = bucket
        return f'<td class="num">{_link(count, **params)}</td>'

    def _render_span_name(self, query: TracezQuery, summary: Optional[SpanMethodSummary]) -> str:
        name = query.span_name or ""
        parts: List[str] = [f"<h2>Span Name: {html.escape(name)}</h2>"]
        if summary is None:
            parts.append("<p>No spans recorded with this name.</p>")
        else:
            parts.append(
                "<p>"
                f"Running: {summary.active_count} &middot; "
                f"Latency samples: {summary.latency_total} &middot; "
                f"Errors: {summary.error_total}"
                "</p>"
            )

        spans = self._select_spans(query)
        if spans is not None:
            parts.append(f"<h3>{html.escape(self._selection_title(query))}</h3>")
            parts.append(self._render_samples(spans))
        return "\n".join(parts)

    def _select_spans(self, query: TracezQuery) -> Optional[List[ReadableSpan]]:
        name = query.span_name or ""
        if query.span_type == SPAN_TYPE_RUNNING:
            return self._processor.active_spans(name)
        if query.span_type == SPAN_TYPE_ERROR:
            return self._processor.error_spans(name)
        if query.span_type == SPAN_TYPE_LATENCY:
            if query.latency_bucket is not None:
                selected = self._processor.spans_by_latency(name, query.latency_bucket)
                if selected is not None:
                    return selected
            spans: List[ReadableSpan] = []
            for index in range(self._processor.boundaries.num_buckets):
                spans.extend(self._processor.spans_by_latency(name, index) or [])
            return spans
        return None

    def _selection_title(self, query: TracezQuery) -> str:
        if query.span_type == SPAN_TYPE_RUNNING:
            return "Running spans"
        if query.span_type == SPAN_TYPE_ERROR:
            return "Error samples"
        bucket = query.latency_bucket
        boundaries = self._processor.boundaries
        if bucket is not None and 0 <= bucket < boundaries.num_buckets:
            return f"Latency samples {boundaries.labels()[bucket]}"
        return "Latency samples"

    def _render_samples(self, spans: Sequence[ReadableSpan]) -> str:
        rows: List[str] = [
            "<table>",
            "<tr><th>When</th><th>Elapsed (s)</th><th>Trace ID</th><th>Span ID</th>"
            "<th>Parent Span ID</th><th>Status</th><th>Attributes</th><th>Events</th></tr>",
        ]
        if not spans:
            rows.append('<tr><td colspan="8">No samples.</td></tr>')
        now = time.time_ns()
        for span in spans:
            rows.append(self._render_sample_row(span, now))
        rows.append("</table>")
        return "\n".join(rows)

    @staticmethod
    def _render_sample_row(span: ReadableSpan, now: int) -> str:
        if span.end_time is None and span.start_time is not None:
            elapsed = max(0, now - span.start_time)
        else:
            elapsed = span_latency(span)
        span_context = span.context
        trace_id = format_trace_id(span_context.trace_id) if span_context else ""
        span_id = format_span_id(span_context.span_id) if span_context else ""
        parent_id = format_span_id(span.parent.span_id) if span.parent else ""
        status = span.status.status_code.name if span.status is not None else ""
        if span.status is not None and span.status.description:
            status = f"{status}: {span.status.description}"
        cells = [
            _format_time(span.start_time),
            _format_seconds(elapsed),
            trace_id,
            span_id,
            parent_id,
            status,
            _format_items(f"{key}={value}" for key, value in (span.attributes or {}).items()),
            _format_items(event.name for event in span.events),
        ]
        return "<tr>" + "".join(f'<td class="mono">{html.escape(cell)}</td>' for cell in cells) + "</tr>"


def _format_items(items: Iterable[str]) -> str:
    return ", ".join(items)


def create_tracez_app(processor: TracezSpanProcessor, path: str = DEFAULT_PATH) -> web.Application:
    handler = TracezHandler(processor)
    app = web.Application()
    app.router.add_get(path, handler.handle)
    return app


@dataclass
class TracezServerConfig:
    endpoint: str = "127.0.0.1:8080"
    path: str = DEFAULT_PATH


class TracezServer:
    """Runs the tracez page on its own aiohttp site."""

    def __init__(self, processor: TracezSpanProcessor, config: Optional[TracezServerConfig] = None) -> None:
        self._processor = processor
        self._config = config or TracezServerConfig()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @property
    def config(self) -> TracezServerConfig:
        return self._config

    @property
    def url(self) -> str:
        return f"http://{self._config.endpoint}{self._config.path}"

    async def start(self) -> None:
        host, port_str = self._config.endpoint.rsplit(":", 1)
        port = int(port_str)
        app = create_tracez_app(self._processor, self._config.path)
        runner = web.AppRunner(app)
        await runner.setup()
        try:
            site = web.TCPSite(runner, host, port)
            await site.start()
        except OSError:
            if port != 0:
                logger.warning(
                    "Failed to bind tracez server to %s:%d, retrying with ephemeral port.", host, port
                )
                site = web.TCPSite(runner, host, 0)
                await site.start()
            else:
                await runner.cleanup()
                raise
        actual_port = site._server.sockets[0].getsockname()[1] if site._server and site._server.sockets else port
        logger.info("tracez listening on http://%s:%d%s", host, actual_port, self._config.path)
        self._config.endpoint = f"{host}:{actual_port}"
        self._runner = runner
        self._site = site

    async def stop(self) -> None:
        if self._site:
            await self._site.stop()
            self._site = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
